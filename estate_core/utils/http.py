"""Shared plumbing for the serverless JSON handlers."""

import asyncio
import json
from http.server import BaseHTTPRequestHandler
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

from estate_core.utils.errors import EstateCoreError, ValidationError
from estate_core.utils.logging import correlation_context, get_structured_logger
from estate_core.utils.logging_config import LoggingConfig

logger = get_structured_logger(__name__)

_logging_ready = False

Response = Tuple[int, Dict[str, Any]]
Dispatcher = Callable[[str, str, Mapping[str, str], Optional[dict]], Awaitable[Response]]


def ensure_logging() -> None:
    """Configure process logging on the first request of a cold start."""
    global _logging_ready
    if not _logging_ready:
        LoggingConfig.setup_logging()
        _logging_ready = True


def split_path(path: str) -> Tuple[list, Dict[str, str]]:
    """Split a request path into segments and single-valued query parameters."""
    parts = urlsplit(path)
    segments = [segment for segment in parts.path.split("/") if segment]
    query = {name: values[-1] for name, values in parse_qs(parts.query).items()}
    return segments, query


def parse_json_body(raw_body: str) -> Optional[dict]:
    if not raw_body:
        return None
    try:
        body = json.loads(raw_body)
    except json.JSONDecodeError as e:
        raise ValidationError("Request body is not valid JSON") from e
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def error_response(error: EstateCoreError) -> Response:
    payload: Dict[str, Any] = {"error": type(error).__name__, "message": error.message}
    if error.entity_id:
        payload["entity_id"] = error.entity_id
    return error.status_code, payload


async def guarded(call: Callable[[], Awaitable[Response]]) -> Response:
    """Run a route, mapping core errors to their status codes and anything else to 500."""
    try:
        return await call()
    except EstateCoreError as e:
        logger.info(
            "Request rejected",
            error_type=type(e).__name__,
            status_code=e.status_code,
            entity_id=e.entity_id,
        )
        return error_response(e)
    except Exception as e:
        logger.exception("Unhandled error while processing request", error=str(e))
        return 500, {"error": "InternalServerError", "message": "internal server error"}


class JsonRequestHandler(BaseHTTPRequestHandler):
    """Base for Vercel handlers: subclasses set ``dispatcher`` to an async router."""

    dispatcher: Optional[Dispatcher] = None

    def _respond(self, status: int, payload: Dict[str, Any]) -> None:
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.end_headers()
        self.wfile.write(json.dumps(payload).encode('utf-8'))

    def _handle(self, method: str) -> None:
        ensure_logging()
        headers = dict(self.headers.items()) if self.headers is not None else {}
        correlation_id = self.headers.get(LoggingConfig.LOG_CORRELATION_ID_HEADER) if self.headers else None

        with correlation_context(correlation_id):
            try:
                content_length = int(self.headers.get('Content-Length', 0) or 0)
                raw_body = self.rfile.read(content_length).decode('utf-8') if content_length > 0 else ""
                body = parse_json_body(raw_body)
            except (ValueError, EstateCoreError) as e:
                error = e if isinstance(e, EstateCoreError) else ValidationError(str(e))
                self._respond(*error_response(error))
                return

            dispatcher = type(self).dispatcher
            status, payload = asyncio.run(dispatcher(method, self.path, headers, body))
            self._respond(status, payload)

    def do_GET(self):
        """Handle GET request."""
        self._handle("GET")

    def do_POST(self):
        """Handle POST request."""
        self._handle("POST")

    def do_PUT(self):
        """Handle PUT request."""
        self._handle("PUT")
