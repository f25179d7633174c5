"""
stakepool/api.py

REST API server exposing the staking engine.

Mutating endpoints take a JSON body naming the acting identity, the
operation's fields, a ``timestamp`` and a ``signature`` over the matching
signing message from stakepool.signing. Engine rejections are returned as
JSON errors carrying the engine error code.
"""

import json
import logging
import time
import trio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from .config import DEFAULT_API_HOST, DEFAULT_API_PORT, SIGNATURE_MAX_AGE
from .errors import ErrorCode, StakingError
from .metrics import MetricsCollector, VERSION
from .signing import (
    verify_message,
    initialize_signing_message,
    stake_signing_message,
    withdraw_signing_message,
    fund_signing_message,
)

if TYPE_CHECKING:
    from .protocol.engine import StakingEngine

logger = logging.getLogger("stakepool.api")

# HTTP status per engine error code
ERROR_STATUS = {
    ErrorCode.INVALID_MINT_AUTHORITY: 403,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.POOL_NOT_FOUND: 404,
    ErrorCode.POOL_ALREADY_EXISTS: 409,
    ErrorCode.ALREADY_ACTIVE_POSITION: 409,
    ErrorCode.NO_ACTIVE_POSITION: 409,
    ErrorCode.INSUFFICIENT_TOKEN_BALANCE: 422,
    ErrorCode.INSUFFICIENT_VAULT_BALANCE: 422,
    ErrorCode.ARITHMETIC_OVERFLOW: 422,
    ErrorCode.INVALID_AMOUNT: 400,
    ErrorCode.INVALID_REWARD_RATE: 400,
    ErrorCode.INVALID_ACCOUNT: 400,
    ErrorCode.LEDGER_ERROR: 500,
}

STATUS_TEXT = {
    200: "OK",
    201: "Created",
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    409: "Conflict",
    422: "Unprocessable Entity",
    500: "Internal Server Error",
    503: "Service Unavailable",
}

Verifier = Callable[..., bool]


class BadRequest(ValueError):
    """Request body is malformed or missing fields."""


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
    def error(cls, message: str, status: int = 400, code: Optional[str] = None) -> "Response":
        """Create error response."""
        data = {"error": message}
        if code:
            data["code"] = code
        return cls.json(data, status=status)

    @classmethod
    def from_staking_error(cls, error: StakingError) -> "Response":
        return cls.error(
            error.message,
            status=ERROR_STATUS.get(error.code, 400),
            code=error.code.value,
        )


class StakingAPI:
    """
    REST API server for a StakingEngine.

    Usage:
        engine = StakingEngine(ledger)
        api = StakingAPI(engine, host="0.0.0.0", port=24700)
        trio.run(api.start)
    """

    def __init__(
        self,
        engine: "StakingEngine",
        host: str = DEFAULT_API_HOST,
        port: int = DEFAULT_API_PORT,
        require_signatures: bool = True,
        signature_max_age: int = SIGNATURE_MAX_AGE,
        verifier: Optional[Verifier] = None,
        enable_metrics: bool = True,
    ):
        """
        Initialize REST API server.

        Args:
            engine: StakingEngine to expose
            host: Host to bind to (default: localhost)
            port: Port to listen on
            require_signatures: Verify request signatures on mutating endpoints
            signature_max_age: Max age of a signed request in seconds
            verifier: Signature check (default: stakepool.signing.verify_message)
            enable_metrics: Enable Prometheus metrics endpoint
        """
        self.engine = engine
        self.host = host
        self.port = port
        self.require_signatures = require_signatures
        self.signature_max_age = signature_max_age
        self.verifier = verifier or verify_message
        # (message, signature) -> timestamp of requests already accepted
        self._seen_signatures: Dict[Tuple[str, str], int] = {}
        self.enable_metrics = enable_metrics

        self.metrics = MetricsCollector(engine) if enable_metrics else None

        self._running = False
        self._start_time = time.time()

        self._routes: Dict[Tuple[str, str], Callable] = {
            ("GET", "/"): self._handle_root,
            ("GET", "/health"): self._handle_health,
            ("GET", "/metrics"): self._handle_metrics,
            ("GET", "/pools"): self._handle_list_pools,
            ("POST", "/pools"): self._handle_initialize_pool,
            ("GET", "/pools/{stake_asset_id}"): self._handle_get_pool,
            ("POST", "/pools/{stake_asset_id}/fund"): self._handle_fund,
            ("POST", "/pools/{stake_asset_id}/stake"): self._handle_stake,
            ("POST", "/pools/{stake_asset_id}/withdraw"): self._handle_withdraw,
            ("GET", "/pools/{stake_asset_id}/positions/{user}"): self._handle_get_position,
        }

    async def start(self) -> None:
        """Start the API server."""
        if self._running:
            logger.warning("API server already running")
            return

        self._running = True
        logger.info(f"Starting staking API on {self.host}:{self.port}")

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
        logger.info("Staking API stopped")

    # ========== HTTP plumbing ==========

    async def _handle_connection(self, stream: trio.SocketStream) -> None:
        """Handle incoming TCP connection."""
        try:
            request = await self._read_request(stream)
            if not request:
                return

            response = await self._route_request(request)
            await self._send_response(stream, response)

        except Exception as e:
            logger.error(f"Connection error: {e}")
            try:
                await self._send_response(stream, Response.error(str(e), status=500))
            except Exception as send_error:
                logger.debug(f"Could not send error response: {send_error}")
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

        except Exception as e:
            logger.error(f"Error reading request: {e}")
            return None

    async def _send_response(self, stream: trio.SocketStream, response: Response) -> None:
        """Send HTTP response."""
        status_text = STATUS_TEXT.get(response.status, "Unknown")
        lines = [f"HTTP/1.1 {response.status} {status_text}"]

        response.headers["Content-Length"] = str(len(response.body))
        response.headers["Connection"] = "close"
        response.headers["Server"] = f"stakepool/{VERSION}"

        for key, value in response.headers.items():
            lines.append(f"{key}: {value}")

        lines.append("")
        header_bytes = "\r\n".join(lines).encode("utf-8") + b"\r\n"

        await stream.send_all(header_bytes + response.body)

    async def _route_request(self, request: Request) -> Response:
        """Route request to handler, translating engine and body errors."""
        handler = self._routes.get((request.method, request.path))

        if handler is None:
            for (method, pattern), candidate in self._routes.items():
                if method != request.method:
                    continue
                match, params = self._match_path(pattern, request.path)
                if match:
                    request.path_params = params
                    handler = candidate
                    break

        if handler is None:
            return Response.error("Not Found", status=404)

        try:
            return await handler(request)
        except StakingError as e:
            return Response.from_staking_error(e)
        except BadRequest as e:
            return Response.error(str(e), status=400)
        except Exception as e:
            logger.error(f"Unhandled error in {request.method} {request.path}: {e}")
            return Response.error(str(e), status=500)

    def _match_path(self, pattern: str, path: str) -> Tuple[bool, Dict[str, str]]:
        """Match path against pattern with parameters."""
        pattern_parts = pattern.split("/")
        path_parts = path.split("/")

        if len(pattern_parts) != len(path_parts):
            return False, {}

        params = {}
        for p_part, path_part in zip(pattern_parts, path_parts):
            if p_part.startswith("{") and p_part.endswith("}"):
                if not path_part:
                    return False, {}
                params[p_part[1:-1]] = path_part
            elif p_part != path_part:
                return False, {}

        return True, params

    # ========== Request helpers ==========

    @staticmethod
    def _parse_body(request: Request) -> Dict[str, Any]:
        if not request.body:
            raise BadRequest("Request body required")
        try:
            body = json.loads(request.body)
        except json.JSONDecodeError:
            raise BadRequest("Invalid JSON")
        if not isinstance(body, dict):
            raise BadRequest("Request body must be a JSON object")
        return body

    @staticmethod
    def _str_field(body: Dict[str, Any], name: str) -> str:
        value = body.get(name)
        if not isinstance(value, str) or not value:
            raise BadRequest(f"{name} is required")
        return value

    @staticmethod
    def _int_field(body: Dict[str, Any], name: str) -> int:
        value = body.get(name)
        if isinstance(value, bool):
            raise BadRequest(f"{name} must be an integer")
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isascii() and value.isdigit():
            return int(value)
        raise BadRequest(f"{name} must be an integer")

    def _authenticate(self, identity: str, message_for: Callable[[int], str], body: Dict[str, Any]) -> None:
        """Check the request signature of ``identity`` (when required)."""
        if not self.require_signatures:
            return

        signature = body.get("signature")
        if not signature:
            raise StakingError(ErrorCode.UNAUTHORIZED, "signature is required")
        try:
            timestamp = self._int_field(body, "timestamp")
        except BadRequest:
            raise StakingError(ErrorCode.UNAUTHORIZED, "timestamp is required")

        if abs(self.engine.now() - timestamp) > self.signature_max_age:
            raise StakingError(ErrorCode.UNAUTHORIZED, "Signed request has expired")

        self._prune_seen_signatures()
        message = message_for(timestamp)
        if (message, signature) in self._seen_signatures:
            logger.warning(f"Replayed request signature for {identity}")
            raise StakingError(ErrorCode.UNAUTHORIZED, "Signed request already used")

        if not self.verifier(message, signature, address=identity):
            logger.warning(f"Invalid request signature for {identity}")
            raise StakingError(ErrorCode.UNAUTHORIZED, "Invalid signature")
        self._seen_signatures[(message, signature)] = timestamp

    def _prune_seen_signatures(self) -> None:
        cutoff = self.engine.now() - self.signature_max_age
        expired = [k for k, ts in self._seen_signatures.items() if ts < cutoff]
        for key in expired:
            del self._seen_signatures[key]

    # ========== Route Handlers ==========

    async def _handle_root(self, request: Request) -> Response:
        return Response.json({
            "name": "stakepool",
            "version": VERSION,
            "endpoints": list(f"{m} {p}" for (m, p) in self._routes.keys()),
        })

    async def _handle_health(self, request: Request) -> Response:
        return Response.json({
            "status": "healthy",
            "pools": len(self.engine.list_pools()),
            "uptime_seconds": time.time() - self._start_time,
        })

    async def _handle_metrics(self, request: Request) -> Response:
        """Handle Prometheus metrics endpoint."""
        if not self.metrics:
            return Response.error("Metrics not enabled", status=404)

        return Response.text(
            self.metrics.collect(),
            content_type="text/plain; version=0.0.4; charset=utf-8",
        )

    async def _handle_list_pools(self, request: Request) -> Response:
        pools = self.engine.list_pools()
        return Response.json({
            "count": len(pools),
            "pools": [p.to_dict() for p in pools],
        })

    async def _handle_initialize_pool(self, request: Request) -> Response:
        body = self._parse_body(request)
        admin = self._str_field(body, "admin")
        stake_asset_id = self._str_field(body, "stake_asset_id")
        reward_asset_id = self._str_field(body, "reward_asset_id")
        reward_rate = self._int_field(body, "reward_rate")
        admin_reward_account = body.get("admin_reward_account")

        self._authenticate(
            admin,
            lambda ts: initialize_signing_message(
                admin, stake_asset_id, reward_asset_id, reward_rate, ts,
            ),
            body,
        )

        pool = await trio.to_thread.run_sync(
            lambda: self.engine.initialize_pool(
                admin=admin,
                stake_asset_id=stake_asset_id,
                reward_asset_id=reward_asset_id,
                reward_rate=reward_rate,
                admin_reward_account=admin_reward_account,
            )
        )
        return Response.json(pool.to_dict(), status=201)

    async def _handle_get_pool(self, request: Request) -> Response:
        stake_asset_id = request.path_params["stake_asset_id"]
        pool = self.engine.get_pool(stake_asset_id)
        data = pool.to_dict()
        data["stake_vault_balance"] = self.engine.stake_vault_balance(stake_asset_id)
        data["reward_vault_balance"] = self.engine.reward_vault_balance(stake_asset_id)
        data["active_positions"] = len(self.engine.active_positions(stake_asset_id))
        return Response.json(data)

    async def _handle_fund(self, request: Request) -> Response:
        stake_asset_id = request.path_params["stake_asset_id"]
        body = self._parse_body(request)
        funder = self._str_field(body, "funder")
        source_account = self._str_field(body, "source_account")
        amount = self._int_field(body, "amount")

        self._authenticate(
            funder,
            lambda ts: fund_signing_message(funder, stake_asset_id, source_account, amount, ts),
            body,
        )

        balance = await trio.to_thread.run_sync(
            lambda: self.engine.fund_reward_vault(funder, stake_asset_id, source_account, amount)
        )
        return Response.json({
            "stake_asset_id": stake_asset_id,
            "funded": amount,
            "reward_vault_balance": balance,
        })

    async def _handle_stake(self, request: Request) -> Response:
        stake_asset_id = request.path_params["stake_asset_id"]
        body = self._parse_body(request)
        user = self._str_field(body, "user")
        source_account = self._str_field(body, "source_account")
        amount = self._int_field(body, "amount")

        self._authenticate(
            user,
            lambda ts: stake_signing_message(user, stake_asset_id, amount, source_account, ts),
            body,
        )

        position = await trio.to_thread.run_sync(
            lambda: self.engine.stake_assets(user, stake_asset_id, amount, source_account)
        )
        return Response.json(position.to_dict(), status=201)

    async def _handle_withdraw(self, request: Request) -> Response:
        stake_asset_id = request.path_params["stake_asset_id"]
        body = self._parse_body(request)
        user = self._str_field(body, "user")
        stake_destination = self._str_field(body, "stake_destination")
        reward_destination = self._str_field(body, "reward_destination")

        self._authenticate(
            user,
            lambda ts: withdraw_signing_message(
                user, stake_asset_id, stake_destination, reward_destination, ts,
            ),
            body,
        )

        result = await trio.to_thread.run_sync(
            lambda: self.engine.withdraw_assets(
                user, stake_asset_id, stake_destination, reward_destination,
            )
        )
        return Response.json(result.to_dict())

    async def _handle_get_position(self, request: Request) -> Response:
        stake_asset_id = request.path_params["stake_asset_id"]
        user = request.path_params["user"]
        return Response.json(self.engine.position_summary(user, stake_asset_id))
