"""Entry point: python -m ssestream URL

Prints every state change and event received from an SSE endpoint until
interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from .client.event_source import EventSource, stop_on_status
from .config import EventSourceConfig
from .connection.state_machine import ReadyState
from .logging_config import setup_logging
from .protocol.event_builder import ServerSentEvent


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Follow a Server-Sent Events stream")
    parser.add_argument("url", help="Event stream URL")
    parser.add_argument("--user", default=None, help="Basic auth user name")
    parser.add_argument("--password", default="", help="Basic auth password")
    parser.add_argument("--log-level", default=None, help="Log level (default: INFO)")
    parser.add_argument("--log-dir", default=None, help="Also write JSON logs to this directory")
    parser.add_argument(
        "--retry-after-unit",
        choices=["ms", "s"],
        default=None,
        help="Unit of numeric Retry-After values (default: ms)",
    )
    parser.add_argument(
        "--stop-on",
        type=int,
        nargs="*",
        default=None,
        metavar="STATUS",
        help="Stop on these HTTP statuses (no value: any 4xx)",
    )
    return parser


async def follow(source: EventSource, auth: tuple[str, str] | None) -> None:
    done = asyncio.Event()

    @source.on_event.add
    def print_event(event: ServerSentEvent) -> None:
        print(f"Event: {event}")

    @source.on_state_change.add
    def print_state(state: ReadyState) -> None:
        print(f"State: {state.value}")
        if not source.running:
            done.set()

    source.start(auth)
    try:
        await done.wait()
    finally:
        await source.aclose()


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    config = EventSourceConfig()
    if args.log_level:
        config.log_level = args.log_level
    if args.log_dir:
        config.log_dir = args.log_dir
    if args.retry_after_unit:
        config.retry_after_unit = args.retry_after_unit

    setup_logging(config.log_level, config.log_dir)

    source = EventSource(args.url, config=config)
    if args.stop_on is not None:
        source.register_error_handler(stop_on_status(source, *args.stop_on))

    auth = (args.user, args.password) if args.user else None
    try:
        asyncio.run(follow(source, auth))
    except KeyboardInterrupt:
        print("Stopped", file=sys.stderr)


if __name__ == "__main__":
    main()
