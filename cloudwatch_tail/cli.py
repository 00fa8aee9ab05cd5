from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

from dotenv import load_dotenv

from .checkpoints import CheckpointStore
from .config import CODECS, load_settings
from .emitter import JsonLinesSink
from .exceptions import ConfigurationError
from .logging_utils import configure_logging, get_logger, log_json
from .registry import build_poll_loop, resolve_sincedb_path

logger = get_logger()


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--group", dest="log_group", default=None, help="Log group to tail (CWTAIL_LOG_GROUP)")
    p.add_argument("--stream", dest="log_streams", action="append", default=None, help="Log stream name; repeatable")
    p.add_argument("--sincedb-path", default=None, help="Checkpoint file (default: derived from group and streams)")
    p.add_argument("--data-dir", default=None, help="Root for derived checkpoint files")


def _add_polling(p: argparse.ArgumentParser) -> None:
    p.add_argument("--start-position", default=None, help="beginning, end, or seconds to read back")
    p.add_argument("--interval", dest="interval_sec", type=float, default=None, help="Seconds between poll cycles")
    p.add_argument("--codec", choices=CODECS, default=None)
    p.add_argument("--region", dest="aws_region", default=None)
    p.add_argument("--profile", dest="aws_profile", default=None)
    p.add_argument("--endpoint-url", default=None)


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def handler(signum, frame):
        log_json(logger, logging.INFO, "stop_requested", signal=signal.Signals(signum).name)
        stop_event.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def run_in_worker(loop, join_interval: float = 0.5) -> None:
    """Run ``loop.run`` on a worker thread and join it from the main thread.

    Signal handlers run on the main thread. Keeping the main thread out of
    ``stop_event.wait`` means a handler calling ``set()`` never re-enters the
    event's lock.
    """
    worker = threading.Thread(target=loop.run, name=f"poll-{loop.group}")
    worker.start()
    while worker.is_alive():
        worker.join(join_interval)


def cmd_status(settings) -> int:
    store = CheckpointStore(resolve_sincedb_path(settings))
    result = store.load_result()
    print(f"sincedb_path={store.path}  status={result.status.value}")
    for group, offset in result.entries.items():
        print(f"{group}  offset={offset}")
    for lineno in result.skipped_lines:
        print(f"skipped malformed line {lineno}")
    return 0


def main(argv=None) -> int:
    load_dotenv(override=False)

    parser = argparse.ArgumentParser(prog="cloudwatch-tail")
    sub = parser.add_subparsers(dest="cmd", required=True)

    tailp = sub.add_parser("tail", help="Poll the log group until interrupted")
    _add_common(tailp)
    _add_polling(tailp)

    oncep = sub.add_parser("once", help="Run a single poll cycle")
    _add_common(oncep)
    _add_polling(oncep)

    statp = sub.add_parser("status", help="Show the checkpoint file")
    _add_common(statp)

    args = parser.parse_args(argv)
    overrides = {k: v for k, v in vars(args).items() if k != "cmd"}
    if overrides.get("log_streams") is not None:
        overrides["log_streams"] = tuple(overrides["log_streams"])

    try:
        settings = load_settings(**overrides)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    configure_logging(settings.log_level)

    if args.cmd == "status":
        return cmd_status(settings)

    stop_event = threading.Event()
    try:
        loop = build_poll_loop(settings, JsonLinesSink(sys.stdout), stop_event=stop_event)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    if args.cmd == "once":
        stats = loop.run_once()
        return 1 if stats.failed else 0

    _install_signal_handlers(stop_event)
    run_in_worker(loop)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
