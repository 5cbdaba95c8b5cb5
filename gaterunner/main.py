"""GateRunner: main entry point."""

import asyncio
import logging
import os

from telethon import TelegramClient
from telethon.sessions import StringSession

from .channels.relay import RelayBot
from .config import GateRunnerSettings, load_settings
from .context import AppContext
from .coordinator import RequestCoordinator
from .driver.telethon_driver import TelethonDriver, TelethonMessenger
from .engine import InteractionEngine
from .errors import ConfigError
from .request_queue import RequestQueue
from .session import SessionStore
from .tracker import CorrelationTracker

_log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger("gaterunner")


def configure_logging(settings: GateRunnerSettings, debug: bool = False):
    """Console logging, plus a file when GATERUNNER_LOG_FILE is set."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        log_file = os.path.expanduser(settings.log_file)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(level=logging.INFO, format=_log_format, handlers=handlers)
    logging.getLogger("gaterunner").setLevel(logging.DEBUG if debug else settings.log_level)
    # Library chatter stays at WARNING
    logging.getLogger("telethon").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_client(settings: GateRunnerSettings, session: str = "") -> TelegramClient:
    return TelegramClient(StringSession(session), settings.api_id, settings.api_hash)


async def run(settings: GateRunnerSettings | None = None):
    """Main run loop."""
    settings = settings or load_settings()
    settings.require_credentials()

    store = SessionStore(settings.session_path)
    session = store.load()
    if not session:
        logger.error("No saved driver session. Run 'gaterunner login' first.")
        return

    client = build_client(settings, session)
    relay = None
    coordinator = None

    try:
        await client.connect()
        if not await client.is_user_authorized():
            logger.error("Saved driver session is no longer authorized. Run 'gaterunner login' again.")
            return
        me = await client.get_me()
        logger.info(f"Driver account: {me.first_name} (@{me.username or 'no username'})")

        driver = TelethonDriver(client)
        relay = RelayBot(settings.bot_token, driver_user_id=me.id)
        await relay.start()
        driver.relay_username = relay.username

        ctx = AppContext(
            settings=settings,
            driver=driver,
            relay=relay,
            driver_messenger=TelethonMessenger(client) if settings.accept_driver_requests else None,
        )
        tracker = CorrelationTracker(ttl_ms=settings.correlation_ttl_ms)
        queue = RequestQueue(max_size=settings.max_queue_size)
        engine = InteractionEngine(ctx)
        coordinator = RequestCoordinator(ctx, queue, engine, tracker)
        relay.attach(coordinator)
        await coordinator.start()

        if settings.accept_driver_requests:
            driver.watch_requests(coordinator.submit)

        logger.info("GateRunner is running. Press Ctrl+C to stop.")
        await client.disconnected

    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.critical(f"Fatal error: {type(e).__name__}: {e}", exc_info=True)
    finally:
        if coordinator:
            await coordinator.stop()
        if relay:
            await relay.stop()
        store.save(client.session.save())
        await client.disconnect()
        logger.info("GateRunner stopped.")


def main():
    settings = load_settings()
    configure_logging(settings)
    try:
        asyncio.run(run(settings))
    except ConfigError as e:
        logger.error(f"❌ {e}")
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
