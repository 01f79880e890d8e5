from core.agent import AgentRecord, AgentSummary
from core.errors import (
    AgentNotFound,
    AgentServiceError,
    ConversationNotFound,
    InvalidInput,
    InvalidSecret,
    NotFound,
    RateLimited,
    RuntimeInitError,
    TransferFailed,
    UpstreamFailure,
    UpstreamTimeout,
)
from core.identity import IdentityGenerator

__all__ = [
    "AgentNotFound",
    "AgentRecord",
    "AgentServiceError",
    "AgentSummary",
    "ConversationNotFound",
    "IdentityGenerator",
    "InvalidInput",
    "InvalidSecret",
    "NotFound",
    "RateLimited",
    "RuntimeInitError",
    "TransferFailed",
    "UpstreamFailure",
    "UpstreamTimeout",
]
