"""Command-line interface for the headless overlay."""

import argparse
import asyncio
import signal
import sys

from dotenv import load_dotenv

from ..config import get_config
from ..events import WireEvent
from ..logger import configure_json_logging, get_logger
from .link import OverlayLink
from .pages import PAGES, AlertsPage, ChatPage, OverlayPage

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="castellan-overlay",
        description="Run one Castellan overlay page without a browser",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Queue alerts and log their sound cues
  castellan-overlay --page alerts

  # Follow chat on another machine
  castellan-overlay --page chat --url ws://192.168.1.20:3002
        """,
    )
    parser.add_argument("--page", choices=sorted(PAGES), default="alerts", help="Page to run (default: alerts)")
    parser.add_argument("--url", help="Castellan WebSocket URL (default: CASTELLAN_OVERLAY__URL)")
    parser.add_argument("--log-level", default=None, help="Logging level (default: CASTELLAN_LOG_LEVEL or INFO)")
    parser.add_argument("--console", action="store_true", help="Human-readable logs instead of JSON")
    return parser


def build_page(name: str, alert_duration: float, chat_history: int) -> OverlayPage:
    if name == AlertsPage.name:
        return AlertsPage(duration=alert_duration)
    if name == ChatPage.name:
        return ChatPage(history=chat_history)
    return PAGES[name]()


async def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    load_dotenv()
    args = build_parser().parse_args(argv)
    config = get_config()

    configure_json_logging(
        service_name="castellan-overlay",
        level=args.log_level or config.log_level,
        json_output=config.json_logs and not args.console,
        component=args.page,
    )

    url = args.url or config.overlay.url
    if not url.startswith(("ws://", "wss://")):
        logger.error("Overlay URL must be a ws:// or wss:// URL", url=url)
        return 2

    page = build_page(args.page, config.overlay.alert_duration, config.overlay.chat_history)

    def on_event(event: WireEvent) -> None:
        page.handle(event)
        rendered = page.render()
        if rendered:
            logger.info("Rendered", page=page.name, event=event.type_tag, view=rendered)

    link = OverlayLink(
        url,
        handler=on_event,
        reconnect_floor=config.overlay.reconnect_floor,
        reconnect_cap_factor=config.overlay.reconnect_cap_factor,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    logger.info("Starting overlay", page=page.name, url=url)
    link.start()
    try:
        await stop.wait()
    finally:
        await link.dispose()
        page.close()
        logger.info("Overlay stopped", page=page.name)
    return 0


def run():
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
