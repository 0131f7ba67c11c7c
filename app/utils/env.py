import logging

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def load_env_file() -> None:
    """Load environment variables from a local .env file if present.

    WHAT:
        Loads variables from .env into os.environ without overwriting
        variables that are already set.
    WHY:
        Developers keep DATABASE_URL / TOKEN_ENCRYPTION_KEY in .env while
        production injects real environment variables.
    """
    loaded = load_dotenv(override=False)

    if loaded:
        logger.info("Loaded local .env file (existing variables were NOT overwritten)")
    else:
        logger.debug("No local .env file found or loaded")
