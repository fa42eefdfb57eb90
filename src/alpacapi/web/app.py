"""FastAPI application serving the Alpaca REST API and setup pages.

Routes:
    GET      /management/apiversions
    GET      /management/v1/description
    GET      /management/v1/configureddevices
    GET/PUT  /api/v1/{device_type}/{device_number}/{action}
    GET      /setup
    GET/POST /setup/v1/{device_type}/{device_number}/setup

Every API response is the Alpaca JSON envelope. ASCOM-level failures are
HTTP 200 with a non-zero ErrorNumber; only requests that do not address a
registered device (bad path, unknown type, unknown number) get HTTP 400.

Device handlers block on instrument locks, so dispatch runs in the
threadpool and the event loop stays free for other clients.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException as StarletteHTTPException

from alpacapi import SUPPORTED_API_VERSIONS, __version__
from alpacapi.alpaca.errors import AlpacaErrorCode, DeviceNotFoundError
from alpacapi.alpaca.request import CaseInsensitiveParams, RequestContext, parse_uint32
from alpacapi.alpaca.response import encode_response
from alpacapi.config import ServerConfig
from alpacapi.devices.base import AlpacaDevice
from alpacapi.devices.registry import DeviceRegistry, DispatchResult
from alpacapi.observability import LogContext, get_logger

logger = get_logger(__name__)

# Paths
WEB_DIR = Path(__file__).parent
TEMPLATES_DIR = WEB_DIR / "templates"

JSON_MEDIA_TYPE = "application/json"


def alpaca_response(
    client_transaction_id: int = 0,
    value: Any = None,
    error_number: int = 0,
    error_message: str = "",
    include_value: bool = True,
    status_code: int = 200,
) -> Response:
    """Wrap an encoded envelope in an HTTP response."""
    return Response(
        content=encode_response(
            client_transaction_id, value, error_number, error_message, include_value
        ),
        status_code=status_code,
        media_type=JSON_MEDIA_TYPE,
    )


def _parse_device_number(raw: str) -> int | None:
    # ASCII only: str.isdigit accepts superscripts that int() rejects.
    if not (raw.isascii() and raw.isdigit()):
        return None
    return int(raw)


def _client_transaction_id(request: Request) -> int:
    return parse_uint32(
        CaseInsensitiveParams.from_query(request.url.query).get("ClientTransactionID")
    )


def _dispatch(registry: DeviceRegistry, context: RequestContext) -> DispatchResult:
    with LogContext(
        client_id=context.client_id,
        client_transaction_id=context.client_transaction_id,
        device=f"{context.device_type}/{context.device_number}",
    ):
        logger.debug("Alpaca request", method=context.method, action=context.action)
        return registry.dispatch(
            context.device_type,
            context.device_number,
            context.action,
            context.params,
            method=context.method,
        )


def create_app(
    registry: DeviceRegistry,
    config: ServerConfig | None = None,
    manage_registry: bool = False,
) -> FastAPI:
    """Create the Alpaca application bound to ``registry``.

    Args:
        registry: Devices to serve.
        config: Server settings, for the management description.
        manage_registry: Start the polling threads on startup and shut the
            registry down on exit. The server entry point sets this; tests
            usually drive the registry themselves.

    Returns:
        Configured FastAPI application.

    Example:
        >>> app = create_app(registry, config, manage_registry=True)
        >>> uvicorn.run(app, host="0.0.0.0", port=6800)
    """
    config = config or ServerConfig()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if manage_registry:
            registry.start()
        logger.info("Alpaca API ready", devices=len(registry))
        yield
        logger.info("Alpaca API stopping")
        if manage_registry:
            await run_in_threadpool(registry.shutdown)

    app = FastAPI(
        title="alpacapi",
        description="ASCOM Alpaca device server",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.state.registry = registry
    app.state.config = config
    templates = Jinja2Templates(directory=TEMPLATES_DIR)

    # =========================================================================
    # Error envelopes
    # =========================================================================

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> Response:
        status = 400 if exc.status_code in (404, 405) else exc.status_code
        return alpaca_response(
            _client_transaction_id(request),
            error_number=int(AlpacaErrorCode.UNSPECIFIED),
            error_message=f"{request.method} {request.url.path}: {exc.detail}",
            status_code=status,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> Response:
        return alpaca_response(
            _client_transaction_id(request),
            error_number=int(AlpacaErrorCode.INVALID_VALUE),
            error_message=str(exc),
            status_code=400,
        )

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> Response:
        logger.error(
            "Unhandled request error",
            method=request.method,
            path=request.url.path,
            exc_info=exc,
        )
        return alpaca_response(
            _client_transaction_id(request),
            error_number=int(AlpacaErrorCode.DRIVER_ERROR),
            error_message=f"{type(exc).__name__}: {exc}",
            status_code=500,
        )

    # =========================================================================
    # Management API
    # =========================================================================

    @app.get("/management/apiversions")
    async def api_versions(request: Request) -> Response:
        return alpaca_response(_client_transaction_id(request), SUPPORTED_API_VERSIONS)

    @app.get("/management/v1/description")
    async def description(request: Request) -> Response:
        return alpaca_response(
            _client_transaction_id(request),
            {
                "ServerName": config.server.name,
                "Manufacturer": config.server.manufacturer,
                "ManufacturerVersion": __version__,
                "Location": config.server.location,
            },
        )

    @app.get("/management/v1/configureddevices")
    async def configured_devices(request: Request) -> Response:
        return alpaca_response(
            _client_transaction_id(request), registry.configured_devices()
        )

    # =========================================================================
    # Device API
    # =========================================================================

    async def device_call(
        request: Request,
        method: str,
        device_type: str,
        device_number: str,
        action: str,
    ) -> Response:
        body = await request.body() if method == "PUT" else b""
        # PUT parameters travel in the form body; body values win.
        params = CaseInsensitiveParams.from_query(body, request.url.query)
        number = _parse_device_number(device_number)
        context = RequestContext.build(
            method, device_type, number if number is not None else -1, action, params
        )
        if number is None or not registry.has(device_type, number):
            error = DeviceNotFoundError(
                f"No device at /api/v1/{device_type}/{device_number}"
            )
            logger.info(
                "Request for unknown device",
                path=request.url.path,
                client_id=context.client_id,
            )
            return alpaca_response(
                context.client_transaction_id,
                error_number=error.error_number,
                error_message=error.message,
                status_code=400,
            )

        result = await run_in_threadpool(_dispatch, registry, context)
        return alpaca_response(
            context.client_transaction_id,
            result.value,
            result.error_number,
            result.error_message,
            include_value=not (context.is_put and result.value is None),
        )

    @app.get("/api/v1/{device_type}/{device_number}/{action}")
    async def device_get(
        request: Request, device_type: str, device_number: str, action: str
    ) -> Response:
        return await device_call(request, "GET", device_type, device_number, action)

    @app.put("/api/v1/{device_type}/{device_number}/{action}")
    async def device_put(
        request: Request, device_type: str, device_number: str, action: str
    ) -> Response:
        return await device_call(request, "PUT", device_type, device_number, action)

    # =========================================================================
    # Setup pages
    # =========================================================================

    def find_device(device_type: str, device_number: str) -> AlpacaDevice | None:
        number = _parse_device_number(device_number)
        if number is None:
            return None
        try:
            return registry.get(device_type, number)
        except DeviceNotFoundError:
            return None

    def render_device_setup(
        request: Request, device: AlpacaDevice, messages: list[str]
    ) -> HTMLResponse:
        with device.lock:
            fields = device.setup_fields()
            state = device.state.value
            last_error = device.last_error
        return templates.TemplateResponse(
            request,
            "device_setup.html",
            {
                "server": config.server,
                "device": device,
                "fields": fields,
                "state": state,
                "last_error": last_error,
                "stats": device.comm_stats.get_summary().to_dict(),
                "messages": messages,
            },
        )

    @app.get("/", include_in_schema=False)
    async def root() -> RedirectResponse:
        return RedirectResponse("/setup")

    @app.get("/setup", response_class=HTMLResponse)
    async def server_setup(request: Request) -> HTMLResponse:
        return templates.TemplateResponse(
            request,
            "setup.html",
            {
                "server": config.server,
                "version": __version__,
                "port": config.port,
                "devices": registry.devices(),
            },
        )

    @app.get("/setup/v1/{device_type}/{device_number}/setup", response_class=HTMLResponse)
    async def device_setup(
        request: Request, device_type: str, device_number: str
    ) -> Response:
        device = find_device(device_type, device_number)
        if device is None:
            return HTMLResponse("Unknown device", status_code=400)
        return await run_in_threadpool(render_device_setup, request, device, [])

    @app.post("/setup/v1/{device_type}/{device_number}/setup", response_class=HTMLResponse)
    async def device_setup_submit(
        request: Request, device_type: str, device_number: str
    ) -> Response:
        device = find_device(device_type, device_number)
        if device is None:
            return HTMLResponse("Unknown device", status_code=400)
        form = CaseInsensitiveParams.from_query(await request.body())

        def apply() -> list[str]:
            with device.lock, LogContext(device=device.label):
                return device.apply_setup(form)

        messages = await run_in_threadpool(apply)
        logger.info("Setup submitted", device=device.label, messages=messages)
        return await run_in_threadpool(render_device_setup, request, device, messages)

    return app


__all__ = ["alpaca_response", "create_app"]
