"""
Alertdesk - Main application entry point.

Runs the alert delivery engine: a scheduler drives periodic processing
passes over due alerts, dispatching them across push, email, SMS and in-app
channels.

Usage:
    python src/main.py                      # scheduler loop
    python src/main.py -once                # single processing pass
    python src/main.py -batch id1,id2 [-dry-run]
    python src/main.py -stats [user_id]
    python src/main.py -health
"""

import asyncio
import json
import sys
import time

from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

from alertdesk.bootstrap import build_sql_alert_service
from alertdesk.config.logging import get_logger
from alertdesk.config.settings import get_settings
from alertdesk.ormdb import check_database_health
from alertdesk.scheduler import (
    add_alert_processing_job,
    create_scheduler,
    list_scheduled_jobs,
    shutdown_scheduler,
    start_scheduler,
)
from alertdesk.services.alerts import AlertService
from alertdesk.utils.config import initialize_application


def _flag_value(flag: str):
    """Return the argument following ``flag``, or None."""
    index = sys.argv.index(flag)
    if index + 1 < len(sys.argv) and not sys.argv[index + 1].startswith("-"):
        return sys.argv[index + 1]
    return None


async def run_once(service: AlertService) -> None:
    results = await service.process_alerts()
    await service.event_bus.drain()
    succeeded = sum(1 for result in results if result.success)
    print(f"Processed {len(results)} delivery results ({succeeded} successful)")


async def run_batch(service: AlertService, alert_ids, dry_run: bool) -> None:
    results = await service.process_batch_alerts(alert_ids, dry_run=dry_run)
    await service.event_bus.drain()
    print(json.dumps([result.to_dict() for result in results], indent=2))


async def print_statistics(service: AlertService, user_id) -> None:
    stats = await service.get_alert_statistics(user_id)
    print(json.dumps(stats.to_dict(), indent=2))


def main() -> None:
    """Main application entry point."""
    initialize_application()

    logger = get_logger(__name__)
    logger.info("Starting Alertdesk application")

    settings = get_settings()
    service = build_sql_alert_service(settings)

    if "-once" in sys.argv:
        asyncio.run(run_once(service))
    elif "-batch" in sys.argv:
        ids = _flag_value("-batch")
        if not ids:
            print("Error: Please provide comma-separated alert ids after -batch.")
            sys.exit(1)
        alert_ids = [alert_id.strip() for alert_id in ids.split(",") if alert_id.strip()]
        asyncio.run(run_batch(service, alert_ids, dry_run="-dry-run" in sys.argv))
    elif "-stats" in sys.argv:
        asyncio.run(print_statistics(service, _flag_value("-stats")))
    elif "-health" in sys.argv:
        health = check_database_health()
        print(json.dumps(health, indent=2, default=str))
        sys.exit(0 if health["status"] == "healthy" else 1)
    else:
        logger.info(
            "Starting scheduler mode",
            interval_minutes=settings.processing_interval_minutes,
        )
        print("Starting Alertdesk scheduler...")

        scheduler = create_scheduler(max_workers=settings.scheduler_max_workers)
        add_alert_processing_job(
            scheduler,
            lambda: asyncio.run(run_once(service)),
            interval_minutes=settings.processing_interval_minutes,
        )
        start_scheduler(scheduler)
        list_scheduled_jobs(scheduler)

        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Received interrupt signal")
            print("\nShutting down...")
        finally:
            logger.info("Shutting down scheduler")
            shutdown_scheduler(scheduler)


if __name__ == "__main__":
    main()
