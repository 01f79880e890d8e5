from uuid import uuid4


class IdentityGenerator:
    """Produces opaque agent identifiers and placeholder names."""

    def new_agent_id(self) -> str:
        return str(uuid4())

    @staticmethod
    def default_display_name(agent_id: str) -> str:
        return f"Agent-{agent_id.replace('-', '')[:8]}"
