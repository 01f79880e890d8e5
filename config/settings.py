from pydantic_settings import BaseSettings

APTOS_NODE_URLS = {
    "mainnet": "https://fullnode.mainnet.aptoslabs.com/v1",
    "testnet": "https://fullnode.testnet.aptoslabs.com/v1",
    "devnet": "https://fullnode.devnet.aptoslabs.com/v1",
    "local": "http://127.0.0.1:8080/v1",
}


class Settings(BaseSettings):
    """Global configuration for the agent service."""

    ANTHROPIC_API_KEY: str = ""
    MODEL_NAME: str = "claude-sonnet-4-20250514"
    MAX_REPLY_TOKENS: int = 1024
    LLM_TIMEOUT: float = 60.0
    VERIFY_MODEL_ON_BIND: bool = True

    # Aptos node (APTOS_NODE_URL wins over APTOS_NETWORK when set)
    APTOS_NETWORK: str = "devnet"
    APTOS_NODE_URL: str = ""
    CHAIN_TIMEOUT: float = 15.0
    CHAIN_RETRIES: int = 2

    DB_PATH: str = "data/agents.db"
    CONTEXT_WINDOW: int = 10   # messages sent to the model per turn
    HISTORY_LIMIT: int = 100   # default page size when reading a conversation

    # Liveness
    AGENT_MAX_AGE_HOURS: float = 24.0
    JANITOR_INTERVAL: int = 3600          # seconds, 0 = on-demand only
    CONVERSATION_RETENTION_DAYS: int = 30  # 0 = keep forever

    # Development-only secret fallback
    ENVIRONMENT: str = "development"
    DEV_MODE: bool = False
    DEV_PRIVATE_KEY: str = ""

    # Admission control
    RATE_LIMIT_WINDOW: int = 900
    RATE_LIMIT_MAX: int = 100
    SENSITIVE_RATE_LIMIT_WINDOW: int = 3600
    SENSITIVE_RATE_LIMIT_MAX: int = 20

    CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    HOST: str = "0.0.0.0"
    PORT: int = 3001
    API_URL: str = "http://localhost:3001"

    LOG_PATH: str = "data/agent-service.log"
    LOG_LEVEL: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def node_url(self) -> str:
        if self.APTOS_NODE_URL:
            return self.APTOS_NODE_URL.rstrip("/")
        return APTOS_NODE_URLS.get(self.APTOS_NETWORK.lower(), APTOS_NODE_URLS["devnet"])

    def fallback_secret(self) -> str | None:
        """Development secret used when a request carries none.

        Only honoured with DEV_MODE on outside production.
        """
        if self.DEV_MODE and not self.is_production and self.DEV_PRIVATE_KEY:
            return self.DEV_PRIVATE_KEY
        return None
