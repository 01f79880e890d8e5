"""Agent world: registry, runtime binding, message routing, liveness, orchestrator."""

from world.binder import RuntimeBinder
from world.janitor import LivenessJanitor
from world.orchestrator import Orchestrator
from world.registry import AgentRegistry
from world.router import MessageRouter

__all__ = [
    "AgentRegistry",
    "LivenessJanitor",
    "MessageRouter",
    "Orchestrator",
    "RuntimeBinder",
]
