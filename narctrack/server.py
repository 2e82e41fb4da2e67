"""HTTP interface of the daemon: start, stop, status, aggregation and control."""

from __future__ import annotations

import csv
import io
import logging
import math
import queue
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlsplit

from narctrack.config import format_duration
from narctrack.daemon import Daemon, Signal, SignalPacket, Store
from narctrack.model import ChangeReason, activities_to_duration_rows

log = logging.getLogger(__name__)

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}


def ceil_to_nearest_fraction(value: float, interval: float) -> float:
    """Round ``value`` up to a multiple of ``1 / interval``; zero leaves it unchanged."""
    if interval == 0:
        return value
    return math.ceil(value * interval) / interval


def round_to_nearest_quarter(value: float) -> float:
    """Round to the nearest multiple of 0.25, halves away from zero."""
    return math.copysign(math.floor(abs(value) * 4 + 0.5), value) / 4


def ceil_to_nearest_quarter(value: float) -> float:
    """Round up to a multiple of 0.25."""
    return math.ceil(value * 4) / 4


def ceil_to_nearest_five_cents(value: float) -> float:
    """Round up to a multiple of 0.05."""
    return math.ceil(value * 20) / 20


def format_elapsed(seconds: float) -> str:
    """Render an elapsed time such as ``"1h2m3.5s"``."""
    return format_duration(seconds)


def _rfc3339(moment: datetime) -> str:
    text = moment.astimezone().isoformat(timespec="seconds") if moment.tzinfo is None \
        else moment.isoformat(timespec="seconds")
    return text[:-6] + "Z" if text.endswith("+00:00") else text


def _parse_date(text: str) -> datetime | None:
    if not re.fullmatch(r"\d{4}-\d{2}-\d{2}", text):
        return None
    try:
        return datetime.strptime(text, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def _round_interval(text: str) -> float:
    if not re.fullmatch(r"[+-]?\d+", text) or not -(2**63) <= int(text) < 2**63:
        return 4.0
    minutes = int(text)
    if minutes == 0:
        return 0.0
    return math.copysign(60 // abs(minutes), minutes)


@dataclass(frozen=True)
class Response:
    """Status, body and content type of a handled request."""

    status: int
    body: str
    content_type: str = "text/plain; charset=utf-8"


def _error(message: str, status: int) -> Response:
    return Response(status, message + "\n")


class Server:
    """Routes requests to the daemon and the store."""

    def __init__(
        self, daemon: Daemon, store: Store, term_signal: "queue.Queue[SignalPacket]"
    ) -> None:
        self.daemon = daemon
        self.store = store
        self.term_signal = term_signal
        self._routes = {
            ("GET", "/up"): lambda params, body: Response(200, "OK"),
            ("POST", "/start"): self._start,
            ("POST", "/end"): self._stop,
            ("POST", "/terminate"): self._terminate,
            ("POST", "/reload"): self._reload,
            ("GET", "/status"): self._status,
            ("GET", "/aggregate"): self._aggregate,
        }

    def handle(self, method: str, path: str, query: str = "", body: bytes | str = b"") -> Response:
        """Dispatch one request and return its response."""
        handler = self._routes.get(("GET" if method == "HEAD" else method, path))
        if handler is None:
            if any(p == path for _, p in self._routes):
                return _error("Method Not Allowed", 405)
            return _error("404 page not found", 404)
        params = {k: v[0] for k, v in parse_qs(query, keep_blank_values=True).items()}
        return handler(params, body.encode("utf-8") if isinstance(body, str) else body)

    def make_http_server(self, host: str = "0.0.0.0", port: int = 0) -> ThreadingHTTPServer:
        """Create (but do not start) a threaded HTTP server bound to ``host:port``."""
        app = self

        class _Handler(BaseHTTPRequestHandler):
            def _dispatch(self) -> None:
                parts = urlsplit(self.path)
                length = int(self.headers.get("Content-Length") or 0)
                body = self.rfile.read(length) if length > 0 else b""
                response = app.handle(self.command, parts.path, parts.query, body)
                payload = response.body.encode("utf-8")
                self.send_response(response.status)
                self.send_header("Content-Type", response.content_type)
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                if self.command != "HEAD":
                    self.wfile.write(payload)

            do_GET = do_POST = do_HEAD = do_PUT = do_DELETE = do_PATCH = _dispatch

            def log_message(self, format: str, *args: object) -> None:
                log.debug("%s - %s", self.address_string(), format % args)

        return ThreadingHTTPServer((host, port), _Handler)

    def _start(self, params: dict[str, str], body: bytes) -> Response:
        name = body.decode("utf-8", errors="replace")
        if not name:
            return _error("empty name sent in start activity", 400)
        try:
            self.daemon.set_activity(name, ignore_idle=params.get("ignoreIdle", "") in _TRUE)
        except Exception as exc:
            return _error(str(exc), 500)
        return Response(200, "OK")

    def _stop(self, params: dict[str, str], body: bytes) -> Response:
        try:
            self.daemon.stop_activity(ChangeReason.EXPLICIT_STOP)
        except Exception as exc:
            return _error(str(exc), 500)
        return Response(200, "OK")

    def _stop_for_exit(self) -> None:
        try:
            self.daemon.stop_activity(ChangeReason.DAEMON_EXIT)
        except Exception as exc:
            log.error("Couldn't stop current activity: %s", exc)

    def _terminate(self, params: dict[str, str], body: bytes) -> Response:
        self._stop_for_exit()
        self.term_signal.put(SignalPacket(Signal.TERM))
        return Response(200, "OK")

    def _reload(self, params: dict[str, str], body: bytes) -> Response:
        current = self.daemon.status()
        self._stop_for_exit()
        self.term_signal.put(
            SignalPacket(
                Signal.HUP,
                last_activity_name=current.activity,
                last_activity_ignore_idle=current.ignore_idle,
            )
        )
        return Response(200, "OK")

    def _status(self, params: dict[str, str], body: bytes) -> Response:
        current = self.daemon.status()
        if not current.valid_activity():
            return Response(200, "No activity set.")
        if not current.valid_period():
            return Response(
                200,
                f"Current activity: {current.activity}\n"
                "Currently idle (may not have polled for user activity yet)",
            )
        start = current.period_start
        elapsed = format_elapsed((datetime.now(start.tzinfo) - start).total_seconds())
        return Response(
            200,
            f"Current activity: {current.activity}\n"
            f"Started at: {_rfc3339(start)}\nRunning for: {elapsed}",
        )

    def _aggregate(self, params: dict[str, str], body: bytes) -> Response:
        start = _parse_date(params.get("start", ""))
        end = _parse_date(params.get("end", ""))
        interval = _round_interval(params.get("round", ""))
        try:
            activities = self.store.get_activities(start, end)
        except Exception as exc:
            return _error(str(exc), 500)
        out = io.StringIO()
        writer = csv.writer(out, lineterminator="\n")
        for row in activities_to_duration_rows(activities):
            hours = ceil_to_nearest_fraction(row.duration.total_seconds() / 3600, interval)
            writer.writerow([row.date.strftime("%Y-%m-%d"), row.name, f"{hours:.2f}"])
        return Response(200, out.getvalue())