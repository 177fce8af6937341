import logging
from .config import settings as default_settings


def setup_logging(settings=None):
    settings = settings or default_settings
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )
