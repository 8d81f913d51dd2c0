from __future__ import annotations

import asyncio
import os
import sys
import threading
import traceback
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.routes import AVAILABLE_ROUTES, router
from app.config.settings import get_settings
from app.integrations.binance_rest import BinanceRestClient
from app.services.price_refresher import PriceRefreshWorker
from app.services.price_service import PriceService


def _fatal(kind: str, detail: str) -> None:
    print(f"[FATAL][{kind}] {detail}", flush=True)
    os._exit(1)


def _on_uncaught_exception(exc_type, exc, tb) -> None:
    _fatal("uncaught_exception", "".join(traceback.format_exception(exc_type, exc, tb)).strip())


def _on_uncaught_thread_exception(args: threading.ExceptHookArgs) -> None:
    if args.exc_type is SystemExit:
        return
    thread_name = args.thread.name if args.thread is not None else "unknown"
    detail = "".join(traceback.format_exception(args.exc_type, args.exc_value, args.exc_traceback)).strip()
    _fatal("uncaught_thread_exception", f"thread={thread_name} {detail}")


def _on_unhandled_async_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    exc = context.get("exception")
    if exc is not None and ("future" in context or "task" in context):
        _fatal("unhandled_rejection", f"{context.get('message', '')} error={exc!r}")
        return
    loop.default_exception_handler(context)


def install_fatal_handlers() -> None:
    sys.excepthook = _on_uncaught_exception
    threading.excepthook = _on_uncaught_thread_exception


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.get_settings()
    app.state.settings = settings

    if app.state.binance_client is None:
        app.state.binance_client = BinanceRestClient(settings.BINANCE_API_URL)
    if app.state.price_service is None:
        app.state.price_service = PriceService(
            client=app.state.binance_client,
            commission=settings.SERVICE_COMMISSION,
        )
    app.state.price_refresher = PriceRefreshWorker(
        price_service=app.state.price_service,
        interval_sec=settings.update_interval_sec,
    )
    if app.state.fatal_on_unhandled:
        asyncio.get_running_loop().set_exception_handler(_on_unhandled_async_exception)

    print(
        "[APP][startup] "
        f"port={settings.PORT} commission_pct={settings.SERVICE_COMMISSION * 100:.4f} "
        f"update_interval_ms={settings.UPDATE_INTERVAL_MS} binance_api_url={settings.BINANCE_API_URL}",
        flush=True,
    )
    app.state.price_refresher.start()

    try:
        yield
    finally:
        app.state.price_refresher.stop()
        print("[APP][shutdown]", flush=True)


app = FastAPI(title="BTC Price Gateway", version="0.1.0", lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
app.include_router(router)

# NOTE: lazy-loaded so app import does not require env during tests.
app.state.get_settings = get_settings
app.state.binance_client = None
app.state.price_service = None
app.state.price_refresher = None
app.state.fatal_on_unhandled = False


@app.middleware("http")
async def log_requests(request: Request, call_next):
    print(f"[HTTP][request] method={request.method} path={request.url.path}", flush=True)
    return await call_next(request)


@app.exception_handler(StarletteHTTPException)
async def route_not_found_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code in (404, 405):
        return JSONResponse(
            status_code=404,
            content={'error': 'Route not found', 'availableRoutes': AVAILABLE_ROUTES},
        )
    return await http_exception_handler(request, exc)


def run() -> None:
    try:
        settings = get_settings()
    except ValidationError as exc:
        for err in exc.errors():
            field = ".".join(str(part) for part in err.get("loc", ()))
            print(f"[CONFIG][invalid] field={field} error={err['msg']}", flush=True)
        sys.exit(1)
    print("[CONFIG][validated] ok", flush=True)

    install_fatal_handlers()
    app.state.fatal_on_unhandled = True
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)


if __name__ == "__main__":
    run()
