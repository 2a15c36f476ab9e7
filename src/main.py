"""Taskpulse entry point — wires the stores, channels, and background poller."""

import asyncio
import logging
import signal

from src.config import settings
from src.notifications.broadcaster import HttpBroadcaster, NullBroadcaster
from src.notifications.dispatcher import NotificationDispatcher
from src.notifications.email_channel import EmailChannel, HttpEmailSender
from src.notifications.in_app_channel import InAppChannel
from src.notifications.preference_store import PreferenceStore
from src.notifications.push_channel import PushChannel
from src.notifications.router import ChannelRouter
from src.notifications.store import NotificationStore
from src.scheduler.engine import BackgroundPoller
from src.tasks.generator import RecurringTaskGenerator
from src.tasks.store import TaskStore

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def build_poller() -> BackgroundPoller:
    """Assemble the generator and dispatcher from the shared stores."""
    task_store = TaskStore.get()
    preferences = PreferenceStore.get()

    router = ChannelRouter()
    if not settings.email_api_url:
        logger.warning("EMAIL_API_URL is empty — email deliveries will fail")
    router.register_channel(EmailChannel(HttpEmailSender(), preferences.get_email_address))
    router.register_channel(InAppChannel())
    router.register_channel(PushChannel())

    broadcaster = HttpBroadcaster() if settings.realtime_gateway_url else NullBroadcaster()
    dispatcher = NotificationDispatcher(
        NotificationStore.get(),
        preferences,
        router,
        broadcaster=broadcaster,
        task_source=task_store,
    )
    return BackgroundPoller(RecurringTaskGenerator(task_store), dispatcher)


async def run() -> None:
    """Run the poller until SIGINT or SIGTERM."""
    poller = build_poller()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await poller.start()
    logger.info("Taskpulse running (db=%s)", settings.database_path)
    try:
        await stop.wait()
    finally:
        await poller.stop()


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
