"""
engagevote/api.py

REST API server for engagevote.

This is the invocation layer: it sources the caller's identity from the
X-Identity header and the current time from a clock, then hands both to
the ledger. All rules live in the ledger.
"""

import json
import logging
import time
import trio
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
from urllib.parse import parse_qs, urlparse

if TYPE_CHECKING:
    from .protocol.ledger import EngagementLedger

from .metrics import MetricsCollector, VERSION
from .protocol.errors import LedgerError
from .protocol.events import LedgerEvent
from .protocol.state import VoteChoice

logger = logging.getLogger("engagevote.api")

IDENTITY_HEADER = "x-identity"

# Request size limits
MAX_HEADER_BYTES = 64 * 1024
MAX_BODY_BYTES = 64 * 1024


class RequestRejected(Exception):
    """Raised while reading a request that must be refused before routing."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.status = status


@dataclass
class Request:
    """HTTP request representation."""
    method: str
    path: str
    query: Dict[str, List[str]]
    headers: Dict[str, str]
    body: bytes
    path_params: Dict[str, str] = field(default_factory=dict)


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


class LedgerAPI:
    """
    REST API server for an EngagementLedger.

    Usage:
        from engagevote.protocol.ledger import EngagementLedger
        from engagevote.api import LedgerAPI

        ledger = EngagementLedger()
        api = LedgerAPI(ledger, host="0.0.0.0", port=24680)
        trio.run(api.start)

        # curl -X POST -H "X-Identity: alice" http://localhost:24680/engage
    """

    def __init__(
        self,
        ledger: "EngagementLedger",
        host: str = "127.0.0.1",
        port: int = 24680,
        enable_metrics: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize REST API server.

        Args:
            ledger: Ledger to expose via API
            host: Host to bind to (default: localhost)
            port: Port to listen on (default: 24680)
            enable_metrics: Enable Prometheus metrics endpoint
            clock: Source of the current time passed to every action
        """
        self.ledger = ledger
        self.host = host
        self.port = port
        self.enable_metrics = enable_metrics
        self._clock = clock

        self.metrics = MetricsCollector(ledger) if enable_metrics else None

        # Server state
        self._running = False
        self._start_time = time.time()

        # Route handlers
        self._routes: Dict[Tuple[str, str], Callable] = {
            ("GET", "/"): self._handle_root,
            ("GET", "/health"): self._handle_health,
            ("GET", "/state"): self._handle_state,
            ("GET", "/users/{identity}"): self._handle_get_user,
            ("GET", "/events"): self._handle_events,
            ("GET", "/metrics"): self._handle_metrics,
            ("POST", "/ownership/claim"): self._handle_claim_ownership,
            ("POST", "/election/start"): self._handle_start_election,
            ("POST", "/election/end"): self._handle_end_election,
            ("POST", "/election/reset"): self._handle_reset,
            ("POST", "/engage"): self._handle_engage,
            ("POST", "/vote/{choice}"): self._handle_vote,
            ("POST", "/rewards/claim"): self._handle_claim_rewards,
        }

    async def start(self) -> None:
        """Start the API server."""
        if self._running:
            logger.warning("API server already running")
            return

        self._running = True
        logger.info(f"Starting REST API server on {self.host}:{self.port}")

        try:
            await trio.serve_tcp(
                self._handle_connection,
                self.port,
                host=self.host,
            )
        except Exception as e:
            logger.error(f"API server error: {e}")
            self._running = False
            raise

    async def stop(self) -> None:
        """Stop the API server."""
        self._running = False
        logger.info("REST API server stopped")

    async def _handle_connection(self, stream: trio.SocketStream) -> None:
        """Handle incoming TCP connection."""
        try:
            request = await self._read_request(stream)
            if not request:
                return

            response = await self._route_request(request)
            await self._send_response(stream, response)

        except RequestRejected as e:
            logger.warning(f"Rejected request: {e}")
            await self._send_response(stream, Response.error(str(e), status=e.status))

        except Exception as e:
            logger.error(f"Connection error: {e}")
            try:
                error_response = Response.error(str(e), status=500)
                await self._send_response(stream, error_response)
            except Exception as send_error:
                logger.debug(f"Could not send error response: {send_error}")
        finally:
            await stream.aclose()

    async def _read_request(self, stream: trio.SocketStream) -> Optional[Request]:
        """
        Read and parse HTTP request.

        Returns None if the peer closes before a full header arrives.

        Raises:
            RequestRejected: If the header or body exceeds its size limit,
                or Content-Length is not a non-negative integer
        """
        try:
            data = b""
            while b"\r\n\r\n" not in data:
                if len(data) > MAX_HEADER_BYTES:
                    raise RequestRejected("Request header too large")
                chunk = await stream.receive_some(4096)
                if not chunk:
                    return None
                data += chunk

            header_end = data.index(b"\r\n\r\n")
            if header_end > MAX_HEADER_BYTES:
                raise RequestRejected("Request header too large")
            header_data = data[:header_end].decode("utf-8")
            body = data[header_end + 4:]

            lines = header_data.split("\r\n")
            request_line = lines[0].split(" ")
            method = request_line[0]
            path_with_query = request_line[1] if len(request_line) > 1 else "/"

            parsed = urlparse(path_with_query)
            path = parsed.path
            query = parse_qs(parsed.query)

            headers = {}
            for line in lines[1:]:
                if ":" in line:
                    key, value = line.split(":", 1)
                    headers[key.strip().lower()] = value.strip()

            try:
                content_length = int(headers.get("content-length", 0))
            except ValueError:
                raise RequestRejected("Invalid Content-Length")
            if content_length < 0:
                raise RequestRejected("Invalid Content-Length")
            if content_length > MAX_BODY_BYTES:
                raise RequestRejected("Request body too large", status=413)
            while len(body) < content_length:
                chunk = await stream.receive_some(4096)
                if not chunk:
                    break
                body += chunk

            return Request(
                method=method,
                path=path,
                query=query,
                headers=headers,
                body=body[:content_length] if content_length else body,
            )

        except RequestRejected:
            raise
        except Exception as e:
            logger.error(f"Error reading request: {e}")
            return None

    async def _send_response(self, stream: trio.SocketStream, response: Response) -> None:
        """Send HTTP response."""
        status_text = {
            200: "OK",
            400: "Bad Request",
            401: "Unauthorized",
            403: "Forbidden",
            404: "Not Found",
            409: "Conflict",
            413: "Payload Too Large",
            429: "Too Many Requests",
            500: "Internal Server Error",
        }.get(response.status, "Unknown")

        lines = [f"HTTP/1.1 {response.status} {status_text}"]

        response.headers["Content-Length"] = str(len(response.body))
        response.headers["Connection"] = "close"
        response.headers["Server"] = f"engagevote/{VERSION}"

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

        for (method, pattern), handler in self._routes.items():
            if method != request.method:
                continue

            match, params = self._match_path(pattern, request.path)
            if match:
                request.path_params = params
                return await handler(request)

        return Response.error("Not Found", status=404)

    def _match_path(self, pattern: str, path: str) -> Tuple[bool, Dict[str, str]]:
        """Match path against pattern with parameters."""
        pattern_parts = pattern.split("/")
        path_parts = path.split("/")

        if len(pattern_parts) != len(path_parts):
            return False, {}

        params = {}
        for p_part, path_part in zip(pattern_parts, path_parts):
            if p_part.startswith("{") and p_part.endswith("}"):
                params[p_part[1:-1]] = path_part
            elif p_part != path_part:
                return False, {}

        return True, params

    def _now(self) -> int:
        return int(self._clock())

    def _run_action(
        self,
        request: Request,
        action: Callable[[str, int], LedgerEvent],
    ) -> Response:
        """Invoke a ledger action for the request's caller."""
        identity = request.headers.get(IDENTITY_HEADER, "").strip()
        if not identity:
            return Response.error("X-Identity header is required", status=401)

        try:
            event = action(identity, self._now())
        except LedgerError as e:
            if self.metrics:
                self.metrics.record_rejection(e.code)
            return Response.json(e.to_dict(), status=e.http_status)

        return Response.json(event.to_dict())

    # ========== Read Handlers ==========

    async def _handle_root(self, request: Request) -> Response:
        """Handle root endpoint."""
        return Response.json({
            "name": "engagevote",
            "version": VERSION,
            "endpoints": list(f"{m} {p}" for (m, p) in self._routes.keys()),
        })

    async def _handle_health(self, request: Request) -> Response:
        """Handle health check."""
        return Response.json({
            "status": "healthy",
            "running": self._running,
            "uptime_seconds": time.time() - self._start_time,
        })

    async def _handle_state(self, request: Request) -> Response:
        """Handle global state endpoint."""
        return Response.json(self.ledger.snapshot())

    async def _handle_get_user(self, request: Request) -> Response:
        """Handle per-identity stats endpoint."""
        identity = request.path_params.get("identity")
        if not identity:
            return Response.error("identity is required", status=400)

        stats = self.ledger.stats_of(identity)
        return Response.json({
            "identity": identity,
            **stats.to_dict(),
            "voting_power": self.ledger.voting_power_of(identity),
        })

    async def _handle_events(self, request: Request) -> Response:
        """Handle recent events endpoint."""
        limit = None
        limit_param = request.query.get("limit", [])
        if limit_param:
            try:
                limit = int(limit_param[0])
            except ValueError:
                return Response.error("limit must be an integer", status=400)

        events = self.ledger.recent_events(limit)
        return Response.json({
            "count": len(events),
            "events": [e.to_dict() for e in events],
        })

    async def _handle_metrics(self, request: Request) -> Response:
        """Handle Prometheus metrics endpoint."""
        if not self.metrics:
            return Response.error("Metrics not enabled", status=404)

        return Response.text(
            self.metrics.collect(),
            content_type="text/plain; version=0.0.4; charset=utf-8",
        )

    # ========== Action Handlers ==========

    async def _handle_claim_ownership(self, request: Request) -> Response:
        return self._run_action(request, self.ledger.claim_ownership)

    async def _handle_start_election(self, request: Request) -> Response:
        return self._run_action(request, self.ledger.start_election)

    async def _handle_end_election(self, request: Request) -> Response:
        return self._run_action(request, self.ledger.end_election)

    async def _handle_reset(self, request: Request) -> Response:
        return self._run_action(request, self.ledger.reset_all)

    async def _handle_engage(self, request: Request) -> Response:
        return self._run_action(request, self.ledger.engage)

    async def _handle_vote(self, request: Request) -> Response:
        """Handle vote endpoint (/vote/a, /vote/b, /vote/c)."""
        try:
            choice = VoteChoice.from_string(request.path_params.get("choice", ""))
        except ValueError as e:
            return Response.error(str(e), status=404)

        return self._run_action(
            request,
            lambda caller, now: self.ledger.cast_vote(caller, choice, now),
        )

    async def _handle_claim_rewards(self, request: Request) -> Response:
        return self._run_action(request, self.ledger.claim_rewards)
