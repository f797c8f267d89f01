import logging
import sys
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from api.server import create_app
from core.config import load_settings
from core.exceptions import ConfigError
from core.logger import setup_logger
from core.settlement_engine import SettlementEngine

BASE_DIR = Path(__file__).resolve().parent.parent

logger = logging.getLogger("app")


def build_app():
    """Load configuration, wire the engine and return the FastAPI app.

    Raises ConfigError when required configuration is missing or invalid.
    """
    settings = load_settings()
    setup_logger(level=settings.log_level, log_dir=settings.log_dir)
    settings.validate_required()
    engine = SettlementEngine.from_settings(settings)
    return create_app(engine), settings


def main() -> int:
    # Load environment variables from .env (in project root)
    load_dotenv(BASE_DIR / ".env")

    try:
        app, settings = build_app()
    except ConfigError as e:
        setup_logger()
        logger.error(str(e))
        logger.error("Please copy .env.example to .env and fill in the values.")
        return 1

    logger.info(f"Status server on http://{settings.host}:{settings.port} "
                "(GET /health, /status, /settlements, /policies)")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
