"""HTTP surface for the login flow.

Thin Starlette layer that translates ``FlowResult`` values into redirects,
JSON bodies and cookies. All flow logic lives in ``CallbackStateMachine``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Coroutine
from typing import Any

import uvicorn
from dotenv import load_dotenv
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from passlink.config import Settings
from passlink.crm.errors import RegistrationError, RegistrationFailureReason
from passlink.flow.callback import CallbackStateMachine
from passlink.flow.results import CookieUpdate, Failed, FlowResult, Redirect, Rendered
from passlink.shared.errors import ConfigurationError, ErrorCategory

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

DISCONNECT_POLL_SECONDS = 0.1
CLIENT_CLOSED_REQUEST = 499

STATUS_BY_CATEGORY = {
    ErrorCategory.CSRF_MISMATCH: 400,
    ErrorCategory.EXPIRED_AUTH_STATE: 400,
    ErrorCategory.AUTHORIZATION_DENIED: 400,
    ErrorCategory.NO_SESSION: 401,
    ErrorCategory.INSUFFICIENT_TRUST_TIER: 403,
    ErrorCategory.UNKNOWN_ACCOUNT_TYPE: 403,
}
DUPLICATE_REASONS = (
    RegistrationFailureReason.DUPLICATE_PHONE,
    RegistrationFailureReason.DUPLICATE_EMAIL,
)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def status_for(result: Failed) -> int:
    """HTTP status for a failed flow; provider and CRM failures map to 502."""
    error = result.error
    if isinstance(error, RegistrationError) and error.reason in DUPLICATE_REASONS:
        return 409
    return STATUS_BY_CATEGORY.get(error.category, 502)


class PasslinkServer:
    """Starlette application serving the login, callback and CRM hand-off routes."""

    def __init__(self, settings: Settings, machine: CallbackStateMachine | None = None):
        self._settings = settings
        self._machine = machine or CallbackStateMachine(settings)
        self._secure_cookies = not settings.is_development

        self.app = Starlette(
            routes=[
                Route("/login", self._handle_login, methods=["GET"]),
                Route("/callback", self._handle_callback, methods=["GET"]),
                Route("/profile", self._handle_profile, methods=["GET"]),
                Route("/confirm", self._handle_confirm, methods=["POST"]),
                Route("/logout", self._handle_logout, methods=["GET"]),
            ],
            lifespan=self._lifespan,
        )

    @contextlib.asynccontextmanager
    async def _lifespan(self, app: Starlette) -> AsyncIterator[None]:
        yield
        await self._machine.close()

    async def serve(self) -> None:
        """Run the application under uvicorn until shutdown."""
        config = uvicorn.Config(
            app=self.app,
            host=self._settings.host,
            port=self._settings.port,
            log_level=self._settings.log_level.lower(),
        )
        server = uvicorn.Server(config)
        logger.info(f"HTTP server starting on {self._settings.host}:{self._settings.port}")
        await server.serve()

    # ================================
    # Route handlers
    # ================================

    async def _handle_login(self, request: Request) -> Response:
        return self._respond(self._machine.start_login())

    async def _handle_callback(self, request: Request) -> Response:
        return await self._run_flow(
            request,
            self._machine.handle_callback(request.query_params, request.cookies),
        )

    async def _handle_profile(self, request: Request) -> Response:
        return self._respond(self._machine.show_profile(request.cookies))

    async def _handle_confirm(self, request: Request) -> Response:
        return await self._run_flow(
            request, self._machine.confirm(request.cookies), redirect_as_json=True
        )

    async def _handle_logout(self, request: Request) -> Response:
        local_only = request.query_params.get("local") in ("1", "true")
        return self._respond(self._machine.logout(request.cookies, local_only))

    # ================================
    # Helpers
    # ================================

    async def _run_flow(
        self,
        request: Request,
        flow: Coroutine[Any, Any, FlowResult],
        redirect_as_json: bool = False,
    ) -> Response:
        """Run a flow, cancelling it if the client disconnects first."""
        flow_task = asyncio.create_task(flow)
        watcher = asyncio.create_task(self._wait_for_disconnect(request))

        try:
            done, _ = await asyncio.wait(
                {flow_task, watcher}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            watcher.cancel()

        if flow_task not in done:
            flow_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await flow_task
            logger.warning(f"Client disconnected, cancelled {request.url.path} flow")
            return Response(status_code=CLIENT_CLOSED_REQUEST)

        try:
            result = flow_task.result()
        except Exception as e:
            logger.error(f"Error handling {request.url.path}: {e}")
            return JSONResponse(
                {"error": "INTERNAL_ERROR", "message": "Internal server error"},
                status_code=500,
            )

        return self._respond(result, redirect_as_json=redirect_as_json)

    @staticmethod
    async def _wait_for_disconnect(request: Request) -> None:
        while not await request.is_disconnected():
            await asyncio.sleep(DISCONNECT_POLL_SECONDS)

    def _respond(self, result: FlowResult, redirect_as_json: bool = False) -> Response:
        response: Response
        if isinstance(result, Redirect):
            if redirect_as_json:
                response = JSONResponse({"redirect": result.url})
            else:
                response = RedirectResponse(result.url, status_code=302)
        elif isinstance(result, Rendered):
            response = JSONResponse({"view": result.view, **result.context})
        else:
            body: dict[str, Any] = {
                "error": result.category,
                "message": result.error.message,
            }
            if isinstance(result.error, RegistrationError):
                body["reason"] = result.error.reason.value
            response = JSONResponse(body, status_code=status_for(result))

        for cookie in result.cookies:
            self._apply_cookie(response, cookie)
        return response

    def _apply_cookie(self, response: Response, cookie: CookieUpdate) -> None:
        if cookie.is_deletion:
            response.delete_cookie(
                cookie.name,
                path="/",
                secure=self._secure_cookies,
                httponly=True,
                samesite="lax",
            )
            return
        response.set_cookie(
            cookie.name,
            cookie.value or "",
            max_age=cookie.max_age,
            path="/",
            secure=self._secure_cookies,
            httponly=True,
            samesite="lax",
        )


def main() -> None:
    load_dotenv()

    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        configure_logging()
        logger.error(str(e))
        raise SystemExit(1) from e

    configure_logging(settings.log_level)
    asyncio.run(PasslinkServer(settings).serve())


if __name__ == "__main__":
    main()
