import time
import logging
import signal
import argparse

from core.app_context import AppContext
from core.config_loader import load_config
from database import database
from database.init_db import init_db
from notification.jobs import NotificationDispatcher, NotificationJobs

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Global flag for graceful shutdown
running = True

TICK_SECONDS = 5


def signal_handler(sig, frame):
    global running
    logger.info("Shutdown signal received")
    running = False


signal.signal(signal.SIGINT, signal_handler)
signal.signal(signal.SIGTERM, signal_handler)


def run_tick(dispatcher: NotificationDispatcher, now: float, next_due: dict, intervals: dict) -> None:
    """Dispatch every sweep whose interval has elapsed."""
    sweeps = {
        'pending': dispatcher.dispatch_due_sweep,
        'batches': dispatcher.dispatch_batch_sweep,
    }
    for name, dispatch in sweeps.items():
        if now < next_due[name]:
            continue
        next_due[name] = now + intervals[name]
        try:
            outcome = dispatch()
        except Exception as e:
            logger.error(f"Error dispatching {name} sweep: {e}", exc_info=True)
            continue
        if outcome.queued:
            logger.info(f"{name} sweep queued as job {outcome.job_id}")
        else:
            logger.info(f"{name} sweep ran inline: {outcome.result}")


def main():
    parser = argparse.ArgumentParser(description="Herald sweep scheduler")
    parser.add_argument('--config', type=str, default='config.yaml')
    parser.add_argument('--create-tables', action='store_true',
                        help='Create missing tables before starting')
    parser.add_argument('--once', action='store_true',
                        help='Run both sweeps once and exit')
    args = parser.parse_args()

    config = load_config(args.config)
    database.configure(config.database.url)
    if args.create_tables:
        # Initialize DB (with retry logic)
        init_db()

    context = AppContext.build(config)
    jobs = NotificationJobs(context, sweep_limit=config.schedule.sweep_limit)
    dispatcher = NotificationDispatcher.from_config(config, jobs)

    intervals = {
        'pending': config.schedule.pending_sweep_seconds,
        'batches': config.schedule.batch_sweep_seconds,
    }
    next_due = {name: 0.0 for name in intervals}

    mode = 'async' if dispatcher.async_mode else 'sync'
    logger.info(
        f"Sweep scheduler starting in {mode.upper()} mode "
        f"(pending every {intervals['pending']}s, batches every {intervals['batches']}s)"
    )

    if args.once:
        run_tick(dispatcher, time.monotonic(), next_due, intervals)
        return

    while running:
        run_tick(dispatcher, time.monotonic(), next_due, intervals)
        # Sleep in chunks to allow responsive shutdown
        time.sleep(TICK_SECONDS)

    logger.info("Sweep scheduler stopped")


if __name__ == "__main__":
    main()
