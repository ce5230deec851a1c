"""Main entry point for the Castellan server."""

import asyncio
import signal
import sys
from collections.abc import Mapping
from typing import Any

from dotenv import load_dotenv

from . import SERVICE_NAME, __version__
from .api import ApiRunner, create_api_app, start_api
from .broadcaster import BroadcastChannel
from .clips import ClipsCache
from .config import CastellanConfig, get_config
from .error_boundary import critical_operation
from .events import CanonicalEvent
from .exceptions import ConfigurationError
from .goals import GoalsState, GoalsStore, JsonGoalsStore, goals_init_from_args
from .logger import configure_json_logging, get_logger
from .router import EventRouter
from .streamerbot import StreamerbotClient
from .websockets.client import Connector

logger = get_logger(__name__)


class CastellanService:
    """Wires the upstream client, goal counters, broadcast channel and HTTP API together."""

    def __init__(
        self,
        config: CastellanConfig,
        store: GoalsStore | None = None,
        upstream_connector: Connector | None = None,
    ):
        self.config = config
        self.store = store or JsonGoalsStore(
            config.goals.state_file,
            followers_target=config.goals.followers_target,
            subscribers_target=config.goals.subscribers_target,
        )

        self.goals = GoalsState(self.store)
        self.channel = BroadcastChannel(
            snapshot_provider=self.goals.snapshot_events, outbox_size=config.server.outbox_size
        )
        self.goals.subscribe(self.channel.publish)
        self.router = EventRouter(self.channel.publish, self.goals)
        self.clips = ClipsCache()

        self.upstream: StreamerbotClient | None = None
        if config.streamerbot.enabled:
            self.upstream = StreamerbotClient(
                config.streamerbot,
                on_event=self.handle_event,
                on_goals_init=self.handle_goals_init,
                connector=upstream_connector,
            )

        self.api_app = create_api_app(self.goals, self.clips, self.channel.publish, self.get_health)
        self.api_runner: ApiRunner | None = None
        self.running = False
        self._stopped = asyncio.Event()

    def handle_event(self, event: CanonicalEvent) -> None:
        self.router.route(event)

    def handle_goals_init(self, args: Mapping[str, Any]) -> None:
        """Names first so the re-broadcast after the config update carries them."""
        follow, sub, update = goals_init_from_args(args)
        self.goals.set_last_names(follow=follow, sub=sub)
        self.goals.apply_config(update)

    @critical_operation
    async def start(self):
        """Start listeners, then the upstream link in the background."""
        logger.info("Starting Castellan", version=__version__)

        await self.channel.start(self.config.server.host, self.config.server.ws_port)
        self.api_runner = await start_api(self.api_app, self.config.server.host, self.config.server.http_port)

        # Never block startup on Streamer.bot; the link retries on its own
        if self.upstream is not None:
            self.upstream.start()
        else:
            logger.warning("Streamer.bot link disabled, only HTTP input is available")

        self.running = True
        self._stopped.clear()
        logger.info(
            "Castellan started",
            ws_port=self.config.server.ws_port,
            http_port=self.config.server.http_port,
            upstream=self.config.streamerbot.url if self.upstream else None,
        )

    async def stop(self):
        """Stop the service."""
        if not self.running:
            return
        logger.info("Stopping Castellan...")
        self.running = False

        if self.upstream is not None:
            await self.upstream.dispose()

        if self.api_runner is not None:
            await self.api_runner.cleanup()
            self.api_runner = None

        await self.channel.stop()
        self._stopped.set()
        logger.info("Castellan stopped")

    async def wait_stopped(self):
        await self._stopped.wait()

    def get_health(self) -> dict:
        upstream_connected = self.upstream is not None and self.upstream.is_open
        return {
            "status": "ok" if upstream_connected else "degraded",
            "name": SERVICE_NAME,
            "version": __version__,
            "uptime": round(self.channel.uptime),
            "wsClients": self.channel.client_count(),
            "upstream": self.upstream.get_status() if self.upstream else {"connected": False, "enabled": False},
        }

    async def health_check(self) -> bool:
        return self.running


async def main(config: CastellanConfig | None = None):
    """Main entry point."""
    load_dotenv()

    try:
        config = (config or get_config()).ensure_valid()
    except ConfigurationError as e:
        configure_json_logging(service_name="castellan")
        for error in e.errors:
            logger.error("Invalid configuration", error=error)
        raise

    configure_json_logging(service_name=config.service_name, level=config.log_level, json_output=config.json_logs)

    service = CastellanService(config)
    loop = asyncio.get_running_loop()

    def handle_shutdown():
        logger.info("Received shutdown signal")
        asyncio.create_task(service.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_shutdown)

    try:
        await service.start()
        await service.wait_stopped()
    except Exception as e:
        logger.error("Service error", error=str(e), exc_info=True)
        await service.stop()
        raise


def run():
    """Console script entry point."""
    try:
        asyncio.run(main())
    except ConfigurationError:
        sys.exit(2)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
