"""Error taxonomy shared by the registry, binder, router and HTTP layer.

Each class carries the HTTP status it maps to so the API boundary can
translate without a lookup table.
"""

from __future__ import annotations


class AgentServiceError(Exception):
    """Base class for every error the core surfaces to its callers."""

    status_code: int = 500

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class InvalidInput(AgentServiceError):
    """Caller-supplied data failed validation."""

    status_code = 400


class NotFound(AgentServiceError):
    status_code = 404


class AgentNotFound(NotFound):
    def __init__(self, agent_id: str, message: str = ""):
        self.agent_id = agent_id
        super().__init__(message or f"Agent {agent_id} not found")


class ConversationNotFound(NotFound):
    pass


class RuntimeInitError(AgentServiceError):
    """Binding a blockchain or conversational runtime failed."""

    status_code = 502


class InvalidSecret(RuntimeInitError):
    """Secret material could not be turned into a signer."""

    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(
            message or "Invalid private key. Initialize the agent with a valid secret first."
        )


class UpstreamFailure(AgentServiceError):
    """A bound runtime's call failed while serving a message."""

    status_code = 502


class UpstreamTimeout(UpstreamFailure):
    status_code = 504

    def __init__(self, operation: str, timeout: float | None = None, message: str = ""):
        self.operation = operation
        self.timeout = timeout
        if not message:
            message = f"{operation} timed out"
            if timeout is not None:
                message += f" after {timeout}s"
        super().__init__(message)


class TransferFailed(UpstreamFailure):
    pass


class RateLimited(AgentServiceError):
    status_code = 429

    def __init__(self, retry_after: int, message: str = ""):
        self.retry_after = retry_after
        super().__init__(message or "Too many requests, please try again later.")
