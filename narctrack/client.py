"""Client for the daemon's HTTP interface, starting the daemon when needed."""

from __future__ import annotations

import http.client
import time
from datetime import date
from typing import Callable
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen


class ClientError(Exception):
    """Raised when the daemon cannot be reached or answers with an error."""


class Client:
    """Talks to the daemon at ``base_url``; ``make_daemon`` starts it if it is down."""

    def __init__(self, base_url: str, make_daemon: Callable[[], None]) -> None:
        self.base_url = base_url
        self.make_daemon = make_daemon
        self.startup_delay = 1.0

    def _send(self, method: str, path: str, body: bytes | None = None) -> tuple[int, str]:
        url = self.base_url + path
        if method == "POST" and body is None:
            body = b""
        request = Request(url, data=body, method=method)
        if method == "POST":
            request.add_header("Content-Type", "text/plain")
        try:
            with urlopen(request) as response:
                return response.status, response.read().decode("utf-8", errors="replace")
        except HTTPError as exc:
            with exc:
                return exc.code, exc.read().decode("utf-8", errors="replace")
        except URLError as exc:
            raise ClientError(f"{method} {url}: {exc.reason}") from exc
        except (OSError, http.client.HTTPException) as exc:
            raise ClientError(f"{method} {url}: {exc}") from exc

    def _ensure_daemon_alive(self) -> bool:
        """Return True if the daemon had to be started."""
        try:
            self._send("GET", "/up")
            return False
        except ClientError:
            pass
        try:
            self.make_daemon()
        except Exception as exc:
            raise ClientError(f"failed to start daemon: {exc}") from exc
        for _ in range(3):
            try:
                self._send("GET", "/up")
            except ClientError:
                pass
            time.sleep(self.startup_delay)
        return True

    @staticmethod
    def _check(operation: str, status: int, body: str) -> str:
        if status != 200:
            raise ClientError(f"unexpected status code in {operation}: {status}, {body}")
        return body

    def start_activity(self, name: str, ignore_idle: bool = False) -> None:
        """Start tracking ``name``."""
        self._ensure_daemon_alive()
        path = "/start?ignoreIdle=true" if ignore_idle else "/start"
        self._check("StartActivity", *self._send("POST", path, name.encode("utf-8")))

    def stop_activity(self) -> None:
        """Stop tracking the current activity."""
        self._ensure_daemon_alive()
        self._check("StopActivity", *self._send("POST", "/end"))

    def terminate_daemon(self) -> None:
        """Ask the daemon to exit."""
        self._check("TerminateDaemon", *self._send("POST", "/terminate"))

    def reload_daemon_config(self) -> None:
        """Ask the daemon to reload its configuration, unless it was just started."""
        if self._ensure_daemon_alive():
            return
        self._check("ReloadDaemonConfig", *self._send("POST", "/reload"))

    def get_status(self) -> str:
        """Return the daemon's description of the current activity."""
        self._ensure_daemon_alive()
        return self._check("GetStatus", *self._send("GET", "/status"))

    def aggregate(
        self, start: date | None = None, end: date | None = None, round_minutes: int = 15
    ) -> str:
        """Return CSV rows of hours per day and activity between ``start`` and ``end``."""
        self._ensure_daemon_alive()
        params: dict[str, str] = {}
        if start is not None:
            params["start"] = start.strftime("%Y-%m-%d")
        if end is not None:
            params["end"] = end.strftime("%Y-%m-%d")
        params["round"] = str(int(round_minutes))
        query = urlencode(sorted(params.items()))
        path = "/aggregate" + (f"?{query}" if query else "")
        return self._check("Aggregate", *self._send("GET", path))