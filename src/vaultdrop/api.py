"""
vaultdrop/api.py

HTTP ingress for vaultdrop.

Accepts trigger events and exposes health, status and metrics:

    POST /webhook     batch of confirmed transactions (JSON array)
    POST /distribute  explicit trigger: poll the vault now
    GET  /health      actor liveness
    GET  /status      distributor state, counters, last round
    GET  /metrics     Prometheus metrics

Triggers are acknowledged with {"queued": true} as soon as they are in the
actor's mailbox; round results only show up in logs, /status and /metrics.
"""

import hmac
import json
import logging
import time
import trio
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

from . import __version__
from .exceptions import ActorStoppedError, PayloadError, RequestTooLargeError
from .metrics import MetricsCollector
from .protocol.ingestion import TriggerEvent, parse_webhook_payload

if TYPE_CHECKING:
    from .protocol.orchestrator import DistributionActor

logger = logging.getLogger("vaultdrop.api")

MAX_BODY_SIZE = 16 * 1024 * 1024


@dataclass
class Request:
    """HTTP request representation."""
    method: str
    path: str
    query: Dict[str, List[str]]
    headers: Dict[str, str]
    body: bytes


@dataclass
class Response:
    """HTTP response representation."""
    status: int
    headers: Dict[str, str]
    body: bytes

    @classmethod
    def json(cls, data: Any, status: int = 200) -> "Response":
        """Create JSON response."""
        body = json.dumps(data, indent=2).encode("utf-8")
        return cls(
            status=status,
            headers={"Content-Type": "application/json"},
            body=body,
        )

    @classmethod
    def text(cls, text: str, status: int = 200, content_type: str = "text/plain") -> "Response":
        """Create text response."""
        return cls(
            status=status,
            headers={"Content-Type": content_type},
            body=text.encode("utf-8"),
        )

    @classmethod
    def error(cls, message: str, status: int = 400) -> "Response":
        """Create error response."""
        return cls.json({"error": message}, status=status)


class DistributorAPI:
    """
    HTTP server feeding the distribution actor.

    Usage:
        api = DistributorAPI(actor, host="0.0.0.0", port=8000, webhook_secret="s3cret")
        async with trio.open_nursery() as nursery:
            nursery.start_soon(actor.run)
            nursery.start_soon(api.start)
    """

    def __init__(
        self,
        actor: "DistributionActor",
        host: str = "127.0.0.1",
        port: int = 8000,
        webhook_secret: Optional[str] = None,
        enable_metrics: bool = True,
        info: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize the API server.

        Args:
            actor: Distribution actor receiving trigger events
            host: Host to bind to (default: localhost)
            port: Port to listen on (default: 8000)
            webhook_secret: If set, /webhook requires this Authorization header
            enable_metrics: Enable Prometheus metrics endpoint
            info: Extra non-secret fields reported by /status
        """
        self.actor = actor
        self.host = host
        self.port = port
        self.webhook_secret = webhook_secret
        self.enable_metrics = enable_metrics
        self.info = info or {}

        self.metrics = MetricsCollector(actor) if enable_metrics else None
        if self.metrics:
            actor.set_on_round_complete(self.metrics.record_outcome)

        self._running = False
        self._start_time = time.time()

        self._routes: Dict[Tuple[str, str], Callable] = {
            ("GET", "/"): self._handle_root,
            ("GET", "/health"): self._handle_health,
            ("GET", "/status"): self._handle_status,
            ("GET", "/metrics"): self._handle_metrics,
            ("POST", "/webhook"): self._handle_webhook,
            ("POST", "/distribute"): self._handle_distribute,
        }

    async def start(self, task_status=trio.TASK_STATUS_IGNORED) -> None:
        """Serve until cancelled."""
        if self._running:
            logger.warning("API server already running")
            return

        self._running = True
        logger.info(f"Starting API server on {self.host}:{self.port}")

        try:
            await trio.serve_tcp(
                self._handle_connection,
                self.port,
                host=self.host,
                task_status=task_status,
            )
        except Exception as e:
            logger.error(f"API server error: {e}")
            raise
        finally:
            self._running = False

    async def _handle_connection(self, stream: trio.SocketStream) -> None:
        """Handle incoming TCP connection."""
        try:
            try:
                request = await self._read_request(stream)
            except RequestTooLargeError as e:
                await self._send_response(stream, Response.error(str(e), status=413))
                return
            if not request:
                return

            response = await self._route_request(request)
            await self._send_response(stream, response)

        except Exception as e:
            logger.error(f"Connection error: {e}")
            try:
                await self._send_response(stream, Response.error(str(e), status=500))
            except trio.BrokenResourceError:
                logger.debug("Client went away before the error response")
        finally:
            await stream.aclose()

    async def _read_request(self, stream: trio.SocketStream) -> Optional[Request]:
        """Read and parse HTTP request."""
        try:
            data = b""
            while b"\r\n\r\n" not in data:
                chunk = await stream.receive_some(4096)
                if not chunk:
                    return None
                data += chunk

            header_end = data.index(b"\r\n\r\n")
            header_data = data[:header_end].decode("utf-8")
            body = data[header_end + 4:]

            lines = header_data.split("\r\n")
            request_line = lines[0].split(" ")
            method = request_line[0]
            path_with_query = request_line[1] if len(request_line) > 1 else "/"

            parsed = urlparse(path_with_query)

            headers = {}
            for line in lines[1:]:
                if ":" in line:
                    key, value = line.split(":", 1)
                    headers[key.strip().lower()] = value.strip()

            content_length = int(headers.get("content-length", 0))
            if content_length > MAX_BODY_SIZE:
                logger.warning(f"Rejecting request body of {content_length} bytes")
                raise RequestTooLargeError(
                    f"Request body of {content_length} bytes exceeds {MAX_BODY_SIZE}"
                )
            while len(body) < content_length:
                chunk = await stream.receive_some(4096)
                if not chunk:
                    break
                body += chunk

            return Request(
                method=method,
                path=parsed.path,
                query=parse_qs(parsed.query),
                headers=headers,
                body=body[:content_length] if content_length else body,
            )

        except (ValueError, UnicodeDecodeError, trio.BrokenResourceError) as e:
            logger.error(f"Error reading request: {e}")
            return None

    async def _send_response(self, stream: trio.SocketStream, response: Response) -> None:
        """Send HTTP response."""
        status_text = {
            200: "OK",
            400: "Bad Request",
            401: "Unauthorized",
            404: "Not Found",
            405: "Method Not Allowed",
            413: "Payload Too Large",
            500: "Internal Server Error",
            503: "Service Unavailable",
        }.get(response.status, "Unknown")

        lines = [f"HTTP/1.1 {response.status} {status_text}"]

        response.headers["Content-Length"] = str(len(response.body))
        response.headers["Connection"] = "close"
        response.headers["Server"] = f"vaultdrop/{__version__}"

        for key, value in response.headers.items():
            lines.append(f"{key}: {value}")

        lines.append("")
        header_bytes = "\r\n".join(lines).encode("utf-8") + b"\r\n"

        await stream.send_all(header_bytes + response.body)

    async def _route_request(self, request: Request) -> Response:
        """Route request to appropriate handler."""
        handler = self._routes.get((request.method, request.path))
        if handler:
            return await handler(request)

        if any(path == request.path for (_, path) in self._routes):
            return Response.error("Method Not Allowed", status=405)
        return Response.error("Not Found", status=404)

    def _enqueue(self, event: TriggerEvent) -> Response:
        try:
            self.actor.submit(event)
        except ActorStoppedError as e:
            logger.error(f"Dropping {event.kind.value} trigger: {e}")
            return Response.error(str(e), status=503)
        return Response.json({"queued": True})

    def _authorized(self, request: Request) -> bool:
        if not self.webhook_secret:
            return True
        supplied = request.headers.get("authorization", "")
        return hmac.compare_digest(supplied.encode("utf-8"), self.webhook_secret.encode("utf-8"))

    # ========== Route Handlers ==========

    async def _handle_root(self, request: Request) -> Response:
        """Handle root endpoint."""
        return Response.json({
            "name": "vaultdrop",
            "version": __version__,
            "endpoints": list(f"{m} {p}" for (m, p) in self._routes.keys()),
        })

    async def _handle_health(self, request: Request) -> Response:
        """Handle health check."""
        is_healthy = self.actor.is_running
        return Response.json({
            "status": "healthy" if is_healthy else "unhealthy",
            "actor_running": is_healthy,
            "pending_events": self.actor.pending_events,
            "uptime_seconds": time.time() - self._start_time,
        }, status=200 if is_healthy else 503)

    async def _handle_status(self, request: Request) -> Response:
        """Handle status endpoint."""
        return Response.json({
            "distributor": self.actor.state.to_dict(),
            "actor": self.actor.get_stats(),
            "settings": self.info,
        })

    async def _handle_metrics(self, request: Request) -> Response:
        """Handle Prometheus metrics endpoint."""
        if not self.metrics:
            return Response.error("Metrics disabled", status=404)
        return Response.text(
            self.metrics.collect(),
            content_type="text/plain; version=0.0.4; charset=utf-8",
        )

    async def _handle_webhook(self, request: Request) -> Response:
        """Handle a pushed batch of confirmed transactions."""
        if not self._authorized(request):
            logger.warning("Rejected webhook call with bad Authorization header")
            return Response.error("Unauthorized", status=401)

        try:
            body = json.loads(request.body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return Response.error(f"Invalid JSON: {e}", status=400)

        try:
            transactions = parse_webhook_payload(body)
        except PayloadError as e:
            return Response.error(str(e), status=400)

        logger.info(f"Webhook delivered {len(transactions)} transactions")
        return self._enqueue(TriggerEvent.observed(transactions))

    async def _handle_distribute(self, request: Request) -> Response:
        """Handle an explicit distribution trigger."""
        logger.info("Explicit distribution trigger received")
        return self._enqueue(TriggerEvent.explicit())
