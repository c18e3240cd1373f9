"""HTTP server for device linking.

Routes:
- POST /pair                   pairing code flow
- GET  /qr/generate            QR code flow
- GET  /qr/status/{session_id} filesystem status of a session
- POST /qr/cleanup             sweep stale credential stores
- GET  /health, /status, /api  service information
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from aiohttp import web

from devlink import __version__
from devlink.errors import LinkTimeoutError, ProvisioningError, ValidationError
from devlink.linking.manager import LinkManager
from devlink.linking.session import LinkMode

logger = logging.getLogger(__name__)

SERVICE_NAME = "devlink"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Turn unknown routes and unhandled errors into JSON bodies."""
    try:
        return await handler(request)
    except web.HTTPNotFound:
        return web.json_response(
            {
                "success": False,
                "message": "Endpoint not found",
                "requestedUrl": request.path,
            },
            status=404,
        )
    except web.HTTPException:
        raise
    except Exception as e:
        logger.error(f"Server error on {request.method} {request.path}: {e}")
        return web.json_response(
            {"success": False, "message": "Internal server error"},
            status=500,
        )


class LinkServer:
    """HTTP front end for a LinkManager."""

    def __init__(self, manager: LinkManager):
        """Initialize server.

        Args:
            manager: Link manager serving the requests.
        """
        self.manager = manager
        self.app = web.Application(middlewares=[error_middleware])
        self._setup_routes()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._port: int = 0
        self._started_at = time.time()

    def _setup_routes(self) -> None:
        """Set up HTTP routes."""
        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_get("/status", self._handle_status)
        self.app.router.add_get("/api", self._handle_api)

        self.app.router.add_post("/pair", self._handle_pair)

        self.app.router.add_get("/qr/generate", self._handle_qr_generate)
        self.app.router.add_get("/qr/status/{session_id}", self._handle_qr_status)
        self.app.router.add_post("/qr/cleanup", self._handle_qr_cleanup)

    # =========================================================================
    # Service information
    # =========================================================================

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "OK",
            "service": SERVICE_NAME,
            "version": __version__,
            "timestamp": _utc_now(),
            "uptime": round(time.time() - self._started_at, 3),
        })

    async def _handle_status(self, request: web.Request) -> web.Response:
        """Count stores on disk and sessions held in memory."""
        registry = self.manager.registry
        return web.json_response({
            "status": "operational",
            "activeSessions": self.manager.root.count(),
            "liveSessions": {
                "pairing": registry.count_by_mode(LinkMode.PAIRING),
                "qr": registry.count_by_mode(LinkMode.QR),
            },
            "serverTime": _utc_now(),
        })

    async def _handle_api(self, request: web.Request) -> web.Response:
        return web.json_response({
            "name": f"{SERVICE_NAME} API",
            "version": __version__,
            "endpoints": {
                "health": "GET /health",
                "status": "GET /status",
                "pair": {"generate": "POST /pair"},
                "qr": {
                    "generate": "GET /qr/generate",
                    "status": "GET /qr/status/:sessionId",
                    "cleanup": "POST /qr/cleanup",
                },
            },
        })

    # =========================================================================
    # Pairing code
    # =========================================================================

    async def _handle_pair(self, request: web.Request) -> web.Response:
        """Issue a pairing code for the posted number."""
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return self._failure("Invalid request body", status=400)
        if not isinstance(body, dict):
            return self._failure("Invalid request body", status=400)

        try:
            result = await self.manager.pairing.start(body.get("number"))
        except ValidationError as e:
            return self._failure(str(e), status=400)
        except ProvisioningError as e:
            return self._failure(str(e), status=500)

        return web.json_response({
            "success": True,
            **result.to_dict(),
            "message": "Pairing code generated successfully",
        })

    # =========================================================================
    # QR code
    # =========================================================================

    async def _handle_qr_generate(self, request: web.Request) -> web.Response:
        """Wait for the first QR payload of a new session."""
        try:
            result = await self.manager.qr.start()
        except LinkTimeoutError as e:
            return self._failure(str(e), status=504)
        except ProvisioningError as e:
            return self._failure(str(e), status=500)

        return web.json_response({
            "success": True,
            **result.to_dict(),
            "message": "QR code generated successfully",
        })

    async def _handle_qr_status(self, request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        return web.json_response(await self.manager.qr.status(session_id))

    async def _handle_qr_cleanup(self, request: web.Request) -> web.Response:
        """Remove credential stores older than the staleness threshold."""
        try:
            cleaned = await self.manager.qr.sweep_stale()
        except OSError as e:
            logger.error(f"Cleanup sweep failed: {e}")
            return web.json_response({"success": False, "error": str(e)}, status=500)

        return web.json_response({
            "success": True,
            "cleaned": cleaned,
            "message": f"Cleaned {cleaned} old sessions",
        })

    def _failure(self, message: str, status: int) -> web.Response:
        return web.json_response({"success": False, "message": message}, status=status)

    # =========================================================================
    # Server lifecycle
    # =========================================================================

    async def start(self, host: str, port: int) -> web.AppRunner:
        """Start the server.

        Args:
            host: Host to bind to.
            port: Port to bind to (0 for random).

        Returns:
            App runner for cleanup.
        """
        await self.manager.start()

        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()

        # Get actual port
        if self._site._server and self._site._server.sockets:
            self._port = self._site._server.sockets[0].getsockname()[1]
        else:
            self._port = port

        logger.info(f"Link server started on {host}:{self._port}")
        return self._runner

    def get_port(self) -> int:
        """Get the actual bound port."""
        return self._port

    async def close(self) -> None:
        """Stop the server and clean up every live session."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        await self.manager.stop()
        logger.info("Link server closed")
