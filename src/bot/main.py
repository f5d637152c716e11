"""Glance playground bot entry point."""

import logging

from src.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
# httpx logs every request at INFO, including the bot token in the URL
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def main() -> None:
    """Start the playground bot on Telegram."""
    from src.bot.app import create_app

    allowed = settings.get_allowed_user_ids()
    if not allowed and not settings.allow_guests:
        logger.warning("ALLOWED_USER_IDS is empty and guests are off — bot will reject all messages")
    else:
        logger.info("Allowed user IDs: %s (guests=%s)", allowed or "none", settings.allow_guests)

    logger.info(
        "Starting Glance playground (store=%s, completion=%s)...",
        settings.backend,
        settings.completion_backend,
    )
    app = create_app()
    app.run_polling()


if __name__ == "__main__":
    main()
