"""Command-line interface for running a radio relay."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from pathlib import Path

from aioradiorelay.config import (
    DEFAULT_DOWNLOAD_TIMEOUT_S,
    DEFAULT_PORT,
    DEFAULT_PREBUFFER_MS,
    DEFAULT_STATION_NAME,
    STREAM_PATH,
    RadioConfig,
)
from aioradiorelay.server import RadioServer
from aioradiorelay.server.discovery import get_local_ip

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the radio relay."""
    parser = argparse.ArgumentParser(description="Run a synchronized internet radio relay")
    parser.add_argument(
        "--host",
        default="0.0.0.0",  # noqa: S104
        help="Address to bind the HTTP server to",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=DEFAULT_PORT,
        help="Port to bind the HTTP server to",
    )
    parser.add_argument(
        "--audio-dir",
        type=Path,
        default=Path("audio"),
        help="Directory holding the resident tracks",
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=Path("cache"),
        help="Directory downloads are stored in",
    )
    parser.add_argument(
        "--name",
        default=DEFAULT_STATION_NAME,
        help="Station name shown to listeners",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level to use",
    )
    parser.add_argument(
        "--track-gap-ms",
        type=int,
        default=0,
        help="Silence between two tracks in milliseconds",
    )
    parser.add_argument(
        "--prebuffer-ms",
        type=int,
        default=DEFAULT_PREBUFFER_MS,
        help="Audio sent unpaced at the start of every track",
    )
    parser.add_argument(
        "--ytdlp-path",
        default=None,
        help="yt-dlp executable, searched on PATH if omitted",
    )
    parser.add_argument(
        "--download-timeout",
        type=float,
        default=DEFAULT_DOWNLOAD_TIMEOUT_S,
        help="Seconds a single download may take",
    )
    parser.add_argument(
        "--keep-downloads",
        action="store_true",
        help="Keep downloaded tracks after they have played",
    )
    parser.add_argument(
        "--mdns",
        action="store_true",
        help="Advertise the stream on the local network via mDNS",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> RadioConfig:
    """Turn parsed arguments into a RadioConfig."""
    return RadioConfig(
        host=args.host,
        port=args.port,
        audio_dir=args.audio_dir,
        cache_dir=args.cache_dir,
        station_name=args.name,
        track_gap_ms=args.track_gap_ms,
        prebuffer_ms=args.prebuffer_ms,
        download_timeout_s=args.download_timeout,
        ytdlp_path=args.ytdlp_path,
        delete_acquired=not args.keep_downloads,
        mdns=args.mdns,
    )


async def main_async(argv: Sequence[str] | None = None) -> int:
    """Entry point executing the asynchronous CLI workflow."""
    args = parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(level=getattr(logging, args.log_level))
    config = build_config(args)

    loop = asyncio.get_running_loop()
    server = RadioServer(loop, config)
    try:
        await server.start()
    except OSError:
        logger.exception("Failed to start the server on %s:%d", config.host, config.port)
        await server.close()
        return 1

    _print_banner(config)

    stop_event = asyncio.Event()

    def signal_handler() -> None:
        logger.debug("Received shutdown signal, closing connections...")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)
    try:
        await stop_event.wait()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await server.close()
    return 0


def _print_banner(config: RadioConfig) -> None:
    port = config.port
    print(  # noqa: T201
        (
            f"{config.station_name} is on air\n"
            f"  Local:   http://localhost:{port}{STREAM_PATH}\n"
            f"  Network: http://{get_local_ip()}:{port}{STREAM_PATH}\n"
            f"  Add a track: POST http://localhost:{port}/add"
        ),
        flush=True,
    )


def main() -> int:
    """Run the radio relay."""
    return asyncio.run(main_async(sys.argv[1:]))


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
