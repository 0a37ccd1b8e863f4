"""
News Card Autopilot

This is the command-line entry point. It runs autopilot cycles, drains
the scheduled post queue and shows run history. Each command is a
short-lived unit of work, so cron can call it directly.

Commands:
    run --user ID          Manual autopilot cycle for one user
    sweep                  Publish due QUEUED posts
    autopilot-sweep        Cron pass over every enabled, due user
    loop --user ID         Keep one user's autopilot running in-process
    history --user ID      Print recent runs
"""

import sys
import argparse
import logging
from typing import Optional, List

from config.validators import validate_settings, get_config_summary
from data.database import DatabaseConnection
from data.models import PostStatus
from services.autopilot_service import AutopilotLoop
from services.factory import autopilot_session, build_services
from utils.exceptions import ConfigurationError, DatabaseError, NewsCardError
from utils.logger import get_logger, setup_file_logging

# Set up logging
logger = get_logger(__name__)


class NewsCardAutopilot:
    """
    Main application class.

    Owns one database connection for the lifetime of a command and
    dispatches to the services built over it.
    """

    def __init__(self, db: Optional[DatabaseConnection] = None):
        self.db = db or DatabaseConnection()
        self.services = build_services(self.db)

    def close(self) -> None:
        self.db.close()

    def run(self, user_id: str) -> bool:
        result = self.services.autopilot.run_once(user_id, force=True)
        if result.success:
            logger.info(f"Autopilot run {result.run_id}: found {result.news_found}, "
                        f"created {result.cards_created}, skipped {result.skipped}, errors {result.errors}")
        else:
            logger.warning(f"Autopilot run for {user_id} did not complete: {result.message}")
        return result.success

    def sweep(self, batch_size: Optional[int] = None) -> bool:
        results = self.services.publisher.sweep_due(batch_size)
        failed = [r for r in results if r.status == PostStatus.FAILED]
        logger.info(f"Sweep processed {len(results)} posts, {len(failed)} failed")
        return not failed

    def autopilot_sweep(self) -> bool:
        results = self.services.autopilot.run_due_users()
        return all(r.success for r in results)

    def history(self, user_id: str, limit: int) -> bool:
        history = self.db.get_run_history(user_id, limit)
        if history is None:
            logger.error(f"Could not load run history for {user_id}")
            return False
        if history.empty:
            print(f"No autopilot runs for {user_id}")
        else:
            print(history.to_string(index=False))
        return True


def run_loop(user_id: str) -> bool:
    """Run one user's autopilot loop in the foreground until it ends or Ctrl+C."""
    loop = AutopilotLoop(autopilot_session)
    handle = loop.start(user_id)
    if handle is None:
        return False
    try:
        while handle.is_alive:
            handle.thread.join(1.0)
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping autopilot loop")
        loop.stop(user_id)
    return True


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='News Card Autopilot')
    parser.add_argument('--log-file', type=str, default='news_card_autopilot.log', help='Log file path')
    parser.add_argument('--log-level', type=str, choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        default='INFO', help='Logging level')

    commands = parser.add_subparsers(dest='command', required=True)

    run = commands.add_parser('run', help='Run one autopilot cycle for a user now')
    run.add_argument('--user', required=True, help='User id')

    sweep = commands.add_parser('sweep', help='Publish scheduled posts that are due')
    sweep.add_argument('--batch-size', type=int, default=None, help='Maximum posts to publish')

    commands.add_parser('autopilot-sweep', help='Run autopilot for every enabled user that is due')

    loop = commands.add_parser('loop', help='Keep autopilot running for a user in this process')
    loop.add_argument('--user', required=True, help='User id')

    history = commands.add_parser('history', help='Show recent autopilot runs')
    history.add_argument('--user', required=True, help='User id')
    history.add_argument('--limit', type=int, default=10, help='Number of runs to show')

    return parser.parse_args(argv)


def dispatch(args) -> bool:
    if args.command == 'loop':
        return run_loop(args.user)

    app = NewsCardAutopilot()
    try:
        if args.command == 'run':
            return app.run(args.user)
        if args.command == 'sweep':
            return app.sweep(args.batch_size)
        if args.command == 'autopilot-sweep':
            return app.autopilot_sweep()
        if args.command == 'history':
            return app.history(args.user, args.limit)
        raise ValueError(f"Unknown command: {args.command}")
    finally:
        app.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    args = parse_arguments(argv)

    # Set up logging
    setup_file_logging(args.log_file, getattr(logging, args.log_level))
    logger.info(f"Starting News Card Autopilot: {args.command}")

    try:
        validate_settings(require_database=True)
        logger.debug(f"Configuration: {get_config_summary()}")

        if dispatch(args):
            logger.info("News Card Autopilot completed successfully")
            exit_code = 0
        else:
            logger.warning("News Card Autopilot completed with warnings or errors")
            exit_code = 1

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        exit_code = 2
    except DatabaseError as e:
        logger.error(f"Database error: {e}", exc_info=True)
        exit_code = 2
    except NewsCardError as e:
        logger.error(f"News card error: {e}", exc_info=True)
        exit_code = 2
    except Exception as e:
        logger.error(f"Unhandled exception in News Card Autopilot: {e}", exc_info=True)
        exit_code = 2

    logger.info(f"News Card Autopilot finished with exit code {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
