def load_env_file() -> None:
    """Load environment variables from a local .env file if present.

    WHAT:
        Loads variables from .env into os.environ without overwriting
        anything already exported.
    WHY:
        Developers can keep secrets in backend/.env while production relies
        on real environment variables.
    """
    import logging
    from dotenv import load_dotenv

    logger = logging.getLogger(__name__)

    loaded = load_dotenv(override=False)

    if loaded:
        logger.info("Loaded local .env file (existing variables were NOT overwritten)")
    else:
        logger.debug("No local .env file found or loaded")
