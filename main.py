"""Main entry point: serves the agent HTTP API.

1. Load config
2. Configure logging (file + stderr)
3. Build the app (Orchestrator is started by the app lifespan)
4. Run under uvicorn until Ctrl+C
"""

import logging
import sys
from pathlib import Path

import uvicorn

from api.app import create_app
from config.settings import Settings


def setup_logging(settings: Settings) -> None:
    """Configure structured logging."""
    log_path = Path(settings.LOG_PATH)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        handlers=[
            logging.FileHandler(log_path, encoding="utf-8"),
            logging.StreamHandler(sys.stderr),
        ],
    )
    # Upstream SDK chatter stays out of INFO logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)


def main() -> None:
    """Launch the agent service."""
    settings = Settings()
    setup_logging(settings)

    if not settings.ANTHROPIC_API_KEY:
        logging.getLogger(__name__).warning(
            "ANTHROPIC_API_KEY is not set; agents will fail to initialize their chat runtime"
        )

    app = create_app(settings)
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    main()
