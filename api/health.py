"""Health check endpoint."""

from http.server import BaseHTTPRequestHandler
import asyncio
import json

from estate_core.services.registry import get_store
from estate_core.utils.errors import EstateCoreError
from estate_core.utils.http import ensure_logging
from estate_core.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


async def check_health() -> tuple[int, dict]:
    """Ping the entity store and report status."""
    try:
        store_ok = await get_store().ping()
    except EstateCoreError as e:
        logger.warning("Store unavailable during health check", error=e.message)
        store_ok = False

    if store_ok:
        return 200, {"status": "ok", "service": "estate-core", "store": "ok"}
    return 503, {"status": "degraded", "service": "estate-core", "store": "unavailable"}


class handler(BaseHTTPRequestHandler):
    """Health check handler for Vercel serverless function."""

    def do_GET(self):
        """Handle GET request."""
        ensure_logging()
        status, payload = asyncio.run(check_health())
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.end_headers()
        self.wfile.write(json.dumps(payload).encode('utf-8'))

    def do_POST(self):
        """Handle POST request (same as GET for health check)."""
        self.do_GET()
