import logging

from src.surveyors_api.config import Settings

_LOGGING_CONFIGURED = False


# PUBLIC_INTERFACE
def configure_logging(settings: Settings) -> None:
    """Configure process-wide logging once, at the level named by LOG_LEVEL."""
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    _LOGGING_CONFIGURED = True
