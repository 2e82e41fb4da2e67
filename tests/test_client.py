import socket
import threading
from datetime import date
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlsplit

import pytest

from narctrack.client import Client, ClientError


class _Recorder(BaseHTTPRequestHandler):
    def _handle(self):
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length).decode() if length else ""
        self.server.requests.append((self.command, self.path, body))
        status, text = self.server.responses.get(urlsplit(self.path).path, (200, "OK"))
        payload = text.encode()
        self.send_response(status)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    do_GET = do_POST = _handle

    def log_message(self, *args):
        pass


def _start_recorder(port=0):
    server = ThreadingHTTPServer(("127.0.0.1", port), _Recorder)
    server.requests = []
    server.responses = {}
    threading.Thread(target=server.serve_forever, daemon=True).start()
    return server


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _no_daemon():
    raise AssertionError("daemon should already be running")


@pytest.fixture
def recorder():
    server = _start_recorder()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def client(recorder):
    result = Client(f"http://127.0.0.1:{recorder.server_address[1]}", _no_daemon)
    result.startup_delay = 0
    return result


def test_start_activity_posts_name(client, recorder):
    result = client.start_activity("deep work")
    assert result is None
    assert recorder.requests == [("GET", "/up", ""), ("POST", "/start", "deep work")]


def test_start_activity_ignore_idle(client, recorder):
    result = client.start_activity("meeting", True)
    assert result is None
    assert recorder.requests[-1] == ("POST", "/start?ignoreIdle=true", "meeting")


def test_start_activity_error_status(client, recorder):
    recorder.responses["/start"] = (500, "boom")
    with pytest.raises(ClientError, match="unexpected status code in StartActivity: 500, boom"):
        client.start_activity("x")


def test_stop_activity(client, recorder):
    result = client.stop_activity()
    assert result is None
    assert recorder.requests[-1] == ("POST", "/end", "")


def test_stop_activity_error_status(client, recorder):
    recorder.responses["/end"] = (500, "nope")
    with pytest.raises(ClientError, match="StopActivity: 500, nope"):
        client.stop_activity()


def test_terminate_does_not_check_liveness(client, recorder):
    result = client.terminate_daemon()
    assert result is None
    assert recorder.requests == [("POST", "/terminate", "")]


def test_terminate_error_status(client, recorder):
    recorder.responses["/terminate"] = (404, "missing")
    with pytest.raises(ClientError, match="TerminateDaemon: 404, missing"):
        client.terminate_daemon()


def test_get_status_returns_body(client, recorder):
    recorder.responses["/status"] = (200, "No activity set.")
    assert client.get_status() == "No activity set."


def test_reload_when_alive(client, recorder):
    result = client.reload_daemon_config()
    assert result is None
    assert recorder.requests[-1] == ("POST", "/reload", "")


def test_reload_error_status(client, recorder):
    recorder.responses["/reload"] = (500, "bad")
    with pytest.raises(ClientError, match="ReloadDaemonConfig: 500, bad"):
        client.reload_daemon_config()


def test_aggregate_query(client, recorder):
    recorder.responses["/aggregate"] = (200, "rows")
    result = client.aggregate(date(2024, 1, 1), date(2024, 1, 31), 15)
    assert result == "rows"
    assert recorder.requests[-1][1] == "/aggregate?end=2024-01-31&round=15&start=2024-01-01"


def test_aggregate_without_dates(client, recorder):
    recorder.responses["/aggregate"] = (200, "")
    result = client.aggregate(None, None, 0)
    assert result == ""
    assert recorder.requests[-1][1] == "/aggregate?round=0"


def test_failed_daemon_start_raises():
    def broken():
        raise OSError("no binary")

    client = Client(f"http://127.0.0.1:{_free_port()}", broken)
    client.startup_delay = 0
    with pytest.raises(ClientError, match="failed to start daemon: no binary"):
        client.get_status()


def test_reload_after_starting_daemon_skips_request():
    port = _free_port()
    started = []

    def start():
        started.append(_start_recorder(port))

    client = Client(f"http://127.0.0.1:{port}", start)
    client.startup_delay = 0
    try:
        result = client.reload_daemon_config()
        assert result is None
        assert len(started) == 1
        paths = [path for _, path, _ in started[0].requests]
        assert "/reload" not in paths
        assert paths.count("/up") == 3
    finally:
        for server in started:
            server.shutdown()
            server.server_close()