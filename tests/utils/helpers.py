"""Test helper functions."""

import json
from io import BytesIO
from typing import Optional

from estate_core.models.identity import Caller


def auth_headers(caller: Caller, **extra: str) -> dict:
    """Authorization header carrying a development token for the caller."""
    headers = {"Authorization": f"Bearer {caller.user_id}:{caller.role.value}"}
    headers.update(extra)
    return headers


class MockSocket:
    """Socket stand-in that feeds one raw HTTP request to a handler."""

    def __init__(self, raw_request: bytes):
        self.raw_request = raw_request
        self.sent = b""

    def makefile(self, *args, **kwargs):
        return BytesIO(self.raw_request)

    def sendall(self, data):
        self.sent += data

    def close(self):
        pass


def build_raw_request(method: str, path: str, headers: Optional[dict] = None, body: Optional[dict] = None) -> bytes:
    """Serialize a request the way BaseHTTPRequestHandler expects to read it."""
    payload = json.dumps(body).encode("utf-8") if body is not None else b""
    lines = [f"{method} {path} HTTP/1.1"]
    for name, value in (headers or {}).items():
        lines.append(f"{name}: {value}")
    if payload:
        lines.append("Content-Type: application/json")
        lines.append(f"Content-Length: {len(payload)}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8") + payload


def call_handler(handler_cls, method: str, path: str, headers: Optional[dict] = None, body: Optional[dict] = None):
    """Run a Vercel handler class over a mock socket and return (status, json_body)."""
    sock = MockSocket(build_raw_request(method, path, headers, body))
    handler_cls(sock, ("127.0.0.1", 8000), None)

    head, _, content = sock.sent.partition(b"\r\n\r\n")
    status = int(head.split(b"\r\n")[0].split(b" ")[1])
    return status, json.loads(content.decode("utf-8")) if content else None
