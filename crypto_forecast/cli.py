"""
Command line entry point for the Bitcoin forecast pipeline
"""
import argparse
import asyncio
import sys
from typing import List, Optional

from rich.console import Console
from rich.markup import escape

from crypto_forecast.bot.pipeline import ForecastPipeline
from crypto_forecast.config import find_and_load_dotenv, load_config, log_config, logger, setup_logging
from crypto_forecast.exceptions import AuthError, ForecastError
from crypto_forecast.notification.alerts import DELIVERY_MODES, MODE_CONSOLE, MODE_TELEGRAM, NotificationManager

error_console = Console(stderr=True)


def setup_cli(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Set up command line interface"""
    parser = argparse.ArgumentParser(
        prog='crypto-forecast',
        description='Bitcoin technical analysis and LLM trading recommendations',
    )
    parser.add_argument('mode', nargs='?', default=MODE_CONSOLE, choices=DELIVERY_MODES,
                        help='Where to deliver the report (default: console)')
    parser.add_argument('--only-prompt', action='store_true',
                        help='Print the generated prompt and skip the model call')
    parser.add_argument('--env', default=None, help='Path to .env file')
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Run one forecast and return the process exit code"""
    args = setup_cli(argv)
    find_and_load_dotenv(args.env)

    try:
        settings = load_config()
        setup_logging(settings.log_level, settings.log_dir)
        log_config(settings)

        # Fail before any network call when required credentials are absent
        if args.mode == MODE_TELEGRAM:
            NotificationManager(settings).check_telegram_config()
        if not args.only_prompt and not settings.anthropic_api_key:
            raise AuthError("ANTHROPIC_API_KEY must be set")

        pipeline = ForecastPipeline(settings)
        asyncio.run(pipeline.run(mode=args.mode, only_prompt=args.only_prompt))
    except ForecastError as e:
        error_console.print(f"[bold red]Error ({type(e).__name__}):[/bold red] {escape(e.message)}", highlight=False)
        return 1
    except KeyboardInterrupt:
        error_console.print("[yellow]Interrupted[/yellow]")
        return 130

    logger.info("Forecast run completed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
