from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse


def message_line(text: str) -> str:
    event = {"type": "message", "message": {"role": "assistant", "content": text}}
    return "data: " + json.dumps(event, ensure_ascii=False) + "\n"


def interrupt_line(
    *,
    to: list[str],
    subject: str,
    body: str,
    cc: list[str] | None = None,
    is_html: bool = False,
    payload: str = "",
) -> str:
    event = {
        "type": "interrupt",
        "payload": payload,
        "draft_email": {"to": to, "subject": subject, "body": body, "cc": cc, "is_html": is_html},
    }
    return "data: " + json.dumps(event, ensure_ascii=False) + "\n"


@dataclass(slots=True)
class StubScript:
    """Lines each endpoint streams back. Every line must end with a newline."""

    send_lines: list[str] = field(default_factory=list)
    resume_lines: list[str] = field(default_factory=list)
    piece_size: int = 7
    chat_id: str = "chat-stub"


def _read_json_body(handler: BaseHTTPRequestHandler) -> dict[str, Any]:
    length_raw = handler.headers.get("content-length")
    try:
        length = int(length_raw) if length_raw else 0
    except ValueError:
        length = 0
    body = handler.rfile.read(length) if length > 0 else b""
    try:
        data = json.loads(body.decode("utf-8", errors="replace"))
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def _json_response(handler: BaseHTTPRequestHandler, status: int, payload: Any) -> None:
    data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("content-type", "application/json; charset=utf-8")
    handler.send_header("content-length", str(len(data)))
    handler.end_headers()
    handler.wfile.write(data)


class _AssistantStubHandler(BaseHTTPRequestHandler):
    server_version = "EpilotAssistantStub/0.1"
    server: "_StubHTTPServer"

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A003
        return

    def do_POST(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        path = parsed.path.rstrip("/")
        body = _read_json_body(self)
        query = {k: v[0] for k, v in parse_qs(parsed.query).items() if v}
        self.server.requests.append({"path": path, "query": query, "json": body})

        script = self.server.script
        if path.startswith("/chats/lists/"):
            _json_response(self, 200, {"chat_id": script.chat_id, "title": "New chat", "created_at": ""})
            return
        if path == "/chats/ai/send":
            self._stream(script.send_lines, script.piece_size)
            return
        if path == "/chats/ai/interrupt/respond":
            self._stream(script.resume_lines, script.piece_size)
            return
        _json_response(self, 404, {"detail": "not found"})

    def _stream(self, lines: list[str], piece_size: int) -> None:
        self.send_response(200)
        self.send_header("content-type", "text/event-stream; charset=utf-8")
        self.send_header("cache-control", "no-cache")
        # No content-length: the body ends when the connection closes.
        self.send_header("connection", "close")
        self.end_headers()
        data = "".join(lines).encode("utf-8")
        step = max(1, int(piece_size))
        for i in range(0, len(data), step):
            self.wfile.write(data[i : i + step])
            self.wfile.flush()
        self.close_connection = True


class _StubHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int], script: StubScript) -> None:
        super().__init__(address, _AssistantStubHandler)
        self.script = script
        self.requests: list[dict[str, Any]] = []


@dataclass(slots=True)
class AssistantStubServer:
    """Local stand-in for the assistant backend that streams scripted `data:` lines."""

    script: StubScript = field(default_factory=StubScript)
    host: str = "127.0.0.1"
    port: int = 0

    _server: _StubHTTPServer | None = None
    _thread: threading.Thread | None = None

    def start(self) -> None:
        if self._server is not None:
            return
        httpd = _StubHTTPServer((self.host, int(self.port)), self.script)
        self._server = httpd
        self.port = int(httpd.server_address[1])
        t = threading.Thread(target=httpd.serve_forever, name="assistant-stub", daemon=True)
        self._thread = t
        t.start()

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        self._thread = None

    @property
    def requests(self) -> list[dict[str, Any]]:
        return list(self._server.requests) if self._server is not None else []

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def __enter__(self) -> "AssistantStubServer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.stop()


def main() -> None:
    script = StubScript(
        send_lines=[
            ": keep-alive\n",
            message_line("Sure, drafting..."),
            interrupt_line(to=["a@b.com"], subject="Meeting", body="Does Tuesday work?"),
        ],
        resume_lines=[message_line("Done.")],
    )
    srv = AssistantStubServer(script=script, port=18765)
    srv.start()
    try:
        print(srv.base_url)
        while True:
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        srv.stop()


if __name__ == "__main__":
    main()
