"""Main entry point for running the wellness companion server."""

import asyncio
import sys

# Load environment variables from .env file before importing other modules
from dotenv import load_dotenv
load_dotenv(override=False)

import uvicorn

from wellness_companion.channels.http import create_app
from wellness_companion.config import settings
from wellness_companion.config.loader import get_yaml_defaults
from wellness_companion.logging import configure_logging, format_log_context, get_logger
from wellness_companion.utils.cron import is_valid_check_in_time, is_valid_timezone

logger = get_logger(__name__)


def config_verify() -> int:
    """Verify configuration loading and print status.

    Returns:
        Exit code (0 for success, 1 for errors).
    """
    print("Wellness Companion Configuration Verification")
    print("=" * 40)

    errors = []

    defaults = get_yaml_defaults()
    print(f"✓ config.yaml loaded ({len(defaults)} keys)")

    try:
        settings.USERS_ROOT.mkdir(parents=True, exist_ok=True)
        print(f"✓ USERS_ROOT: {settings.USERS_ROOT}")
    except OSError as e:
        errors.append(f"USERS_ROOT: {e}")
        print(f"✗ USERS_ROOT: {e}")

    if is_valid_check_in_time(settings.DEFAULT_CHECK_IN_TIME):
        print(f"✓ Default check-in time: {settings.DEFAULT_CHECK_IN_TIME}")
    else:
        errors.append(f"DEFAULT_CHECK_IN_TIME: {settings.DEFAULT_CHECK_IN_TIME}")
        print(f"✗ Default check-in time: {settings.DEFAULT_CHECK_IN_TIME}")

    if is_valid_timezone(settings.DEFAULT_TIMEZONE):
        print(f"✓ Default timezone: {settings.DEFAULT_TIMEZONE}")
    else:
        errors.append(f"DEFAULT_TIMEZONE: {settings.DEFAULT_TIMEZONE}")
        print(f"✗ Default timezone: {settings.DEFAULT_TIMEZONE}")

    print(f"  Check-in mode: {settings.CHECK_IN_MODE}")
    print(f"  Tone analyzer: {settings.TONE_ANALYZER}")
    if settings.TONE_ANALYZER == "llm" and not settings.OPENAI_API_KEY:
        print("  ! OPENAI_API_KEY not set; tone analysis will fall back to neutral")

    print("=" * 40)
    if errors:
        print(f"{len(errors)} error(s)")
        return 1
    print("Configuration OK")
    return 0


async def main() -> None:
    """Serve the HTTP app until interrupted."""
    configure_logging()
    app = create_app()
    config = uvicorn.Config(
        app=app,
        host=settings.HTTP_HOST,
        port=settings.HTTP_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
    server = uvicorn.Server(config)
    logger.info(
        f"{format_log_context('system', component='startup')} "
        f"serving on {settings.HTTP_HOST}:{settings.HTTP_PORT} mode={settings.CHECK_IN_MODE}"
    )
    await server.serve()


def run() -> None:
    """Synchronous entry point for console script.

    Handles CLI commands:
    - wellness-companion config verify - Verify configuration
    - wellness-companion (no args) - Start the server
    """
    if len(sys.argv) > 1:
        command = sys.argv[1].lower()
        if command == "config" and len(sys.argv) > 2 and sys.argv[2].lower() == "verify":
            sys.exit(config_verify())
        print("Available commands:")
        print("  wellness-companion config verify  - Verify configuration")
        sys.exit(1)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    run()
