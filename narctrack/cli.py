"""Command-line entry point: activity commands, the daemon and config management."""

from __future__ import annotations

import argparse
import logging
import queue
import re
import subprocess
import sys
import threading
from contextlib import ExitStack, contextmanager
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Iterator, Sequence

from narctrack.client import Client, ClientError
from narctrack.config import Config, ConfigError, StorageType, get_config, set_config_option
from narctrack.daemon import Daemon, Signal, SignalPacket
from narctrack.idle import Monitor
from narctrack.server import Server
from narctrack.store import CsvStore

log = logging.getLogger(__name__)

PROG = "narc"
_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")
_LOG_FORMAT = "%(asctime)s %(message)s"


def parse_time_string(text: str, now: datetime | None = None) -> date | None:
    """Parse ``YYYY-MM-DD`` or 'yesterday', 'today', 'tomorrow'; empty gives None."""
    if text == "":
        return None
    if now is None:
        now = datetime.now()
    lowered = text.lower()
    if lowered == "today":
        return now.date()
    if lowered == "tomorrow":
        return (now + timedelta(hours=24)).date()
    if lowered == "yesterday":
        return (now - timedelta(hours=24)).date()
    if not _DATE_RE.fullmatch(lowered):
        raise ValueError(f'cannot parse "{text}" as a date (expected YYYY-MM-DD)')
    try:
        return date.fromisoformat(lowered)
    except ValueError as exc:
        raise ValueError(f'cannot parse "{text}" as a date: {exc}') from None


def validate_round(value: int) -> int:
    """Check a rounding amount in minutes lies between 0 and 60 inclusive."""
    if value < 0 or value > 60:
        raise ValueError(
            f"invalid hour amount {value}, must be between 0 and 60 inclusive"
        )
    return value


def _round_arg(text: str) -> int:
    try:
        return validate_round(int(text))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for all commands."""
    parser = argparse.ArgumentParser(prog=PROG, description="Track time spent on activities.")
    commands = parser.add_subparsers(dest="command", required=True, metavar="<command>")

    start = commands.add_parser("start", help="Start an activity.")
    start.add_argument(
        "-m",
        "--meeting",
        action="store_true",
        help="Runs in 'meeting mode': won't treat idle events as the end of an activity.",
    )
    start.add_argument("nameparts", nargs="+", help="Name of the activity to start.")

    commands.add_parser("end", help="End the current activity.")
    commands.add_parser("status", help="Get the current status of the daemon and activity.")

    aggregate = commands.add_parser(
        "aggregate", aliases=["agg"], help="Aggregate time logs over the specified period."
    )
    aggregate.set_defaults(command="aggregate")
    aggregate.add_argument(
        "--round",
        type=_round_arg,
        default=15,
        help="Round durations to the nearest X minutes. Defaults to 15.",
    )
    period_help = (
        "{} of the period over which to aggregate. "
        "Use YYYY-MM-DD or 'yesterday', 'today', 'tomorrow'."
    )
    aggregate.add_argument("start", nargs="?", default="", help=period_help.format("Start"))
    aggregate.add_argument("end", nargs="?", default="", help=period_help.format("End"))

    daemon = commands.add_parser("daemon", help="Start the daemon.")
    daemon.add_argument(
        "--log-to-file",
        action="store_true",
        help="Whether the daemon should log to the configured logfile.",
    )

    commands.add_parser("terminate", help="Terminate the daemon.")

    config = commands.add_parser("config", help="Show or change configuration.")
    config_commands = config.add_subparsers(
        dest="config_command", required=True, metavar="<subcommand>"
    )
    config_commands.add_parser("show", help="Prints current configuration.")
    get = config_commands.add_parser("get", help="Print the value of a config option.")
    get.add_argument("name", help="Name of the config option.")
    set_ = config_commands.add_parser("set", help="Set a config option.")
    set_.add_argument("name", help="Name of the config option.")
    set_.add_argument(
        "value",
        help='Value of the config option. The special value "default" will reset it to its default.',
    )
    return parser


def make_daemon() -> None:
    """Start the daemon as a detached background process."""
    subprocess.Popen(
        [sys.executable, "-m", "narctrack.cli", "daemon", "--log-to-file"],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )


@contextmanager
def configure_file_logging(path: str | Path) -> Iterator[Path]:
    """Send all log output to ``path`` while the context is open."""
    path = Path(path)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    saved_level = root.level
    for existing in saved_handlers:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.INFO)
    try:
        yield path
    finally:
        root.removeHandler(handler)
        handler.close()
        for existing in saved_handlers:
            root.addHandler(existing)
        root.setLevel(saved_level)


def _listen_port(base_url: str) -> int:
    text = base_url[base_url.rfind(":") + 1 :] or "80"
    try:
        return int(text)
    except ValueError:
        raise ConfigError(f"invalid port in server base URL {base_url!r}") from None


def daemon_main(
    config: Config,
    log_to_file: bool = False,
    initial_activity: str = "",
    initial_ignore_idle: bool = False,
) -> SignalPacket:
    """Run the daemon and its HTTP server until told to stop or reload.

    Returns the signal that ended the run.
    """
    with ExitStack() as stack:
        if log_to_file:
            stack.enter_context(configure_file_logging(config.log_path))
        if config.storage_type != StorageType.CSV.value:
            raise ConfigError(f"Unknown storage type {config.storage_type}")
        handle = open(config.csv_path, "a+", newline="", encoding="utf-8")
        store = CsvStore(handle)
        stack.callback(store.close)
        port = _listen_port(config.server_base_url)

        stop_event = threading.Event()
        stack.callback(stop_event.set)
        monitor = Monitor(config.idle_timeout)
        daemon = Daemon(store, monitor.start(stop_event))
        if initial_activity:
            daemon.set_activity(initial_activity, ignore_idle=initial_ignore_idle)
        daemon.run(stop_event)

        term_signal: "queue.Queue[SignalPacket]" = queue.Queue()
        server = Server(daemon, store, term_signal)
        httpd = server.make_http_server("0.0.0.0", port)
        threading.Thread(target=httpd.serve_forever, name="narc-http", daemon=True).start()
        log.info("Server ready")

        packet = term_signal.get()
        httpd.shutdown()
        httpd.server_close()

        if packet.signal == Signal.HUP:
            log.info("Received config reload signal")
        else:
            log.info("Server quit")
        return packet


def _run_daemon(config: Config, log_to_file: bool) -> None:
    name, ignore_idle = "", False
    while True:
        packet = daemon_main(config, log_to_file, name, ignore_idle)
        if packet.signal != Signal.HUP:
            return
        config = get_config()
        name = packet.last_activity_name
        ignore_idle = packet.last_activity_ignore_idle


def _report(message: str) -> None:
    print(f"{PROG}: error: {message}", file=sys.stderr)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command given by ``argv`` and return the exit status."""
    try:
        conf = get_config()
    except (OSError, ValueError) as exc:
        print(exc, file=sys.stderr)
        return 1
    args = build_parser().parse_args(argv)
    failed = False

    def client() -> Client:
        return Client(conf.server_base_url, make_daemon)

    if args.command == "start":
        try:
            client().start_activity(" ".join(args.nameparts), args.meeting)
        except ClientError as exc:
            _report(f"error starting activity: {exc}")
            failed = True
    elif args.command == "end":
        try:
            client().stop_activity()
        except ClientError as exc:
            _report(f"error starting activity: {exc}")
            failed = True
    elif args.command == "status":
        try:
            print(client().get_status())
        except ClientError as exc:
            _report(f"error getting status: {exc}")
            failed = True
    elif args.command == "daemon":
        if not args.log_to_file:
            logging.basicConfig(level=logging.INFO, format=_LOG_FORMAT)
        try:
            _run_daemon(conf, args.log_to_file)
        except (OSError, ValueError) as exc:
            print(exc, file=sys.stderr)
            return 1
    elif args.command == "terminate":
        try:
            client().terminate_daemon()
        except ClientError as exc:
            _report(f"error terminating daemon: {exc}")
            failed = True
    elif args.command == "aggregate":
        try:
            start = parse_time_string(args.start)
        except ValueError as exc:
            _report(f"error parsing start time: {exc}")
            return 1
        try:
            end = parse_time_string(args.end)
        except ValueError as exc:
            _report(f"error parsing end time: {exc}")
            return 1
        try:
            result = client().aggregate(start, end, args.round)
        except ClientError as exc:
            _report(f"error getting aggregate: {exc}")
            return 1
        sys.stdout.write(result)
    elif args.command == "config":
        if args.config_command == "show":
            print(conf)
        elif args.config_command == "get":
            print(conf.property_by_name(args.name))
        else:
            try:
                set_config_option(args.name, args.value)
            except (OSError, ValueError) as exc:
                _report(f"failed to update config: {exc}")
                failed = True
            try:
                client().reload_daemon_config()
            except ClientError as exc:
                _report(f"error reloading daemon config: {exc}")
                failed = True
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())