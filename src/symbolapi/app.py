"""
symbolapi - accepts lists of module offsets and returns symbolicated frames.

A request such as::

    {"stacks": [[[0, 11723767], [1, 65802]]],
     "memoryMap": [["xul.pdb", "44E4EC8C2F41492B9369D6B9A059577C2"],
                   ["wntdll.pdb", "D74F79EB1F8D4A45ABCD2F476CCABACC2"]],
     "version": 4}

is answered with::

    {"symbolicatedStacks": [["XREMain::XRE_mainRun() (in xul.pdb)",
                             "KiUserCallbackDispatcher (in wntdll.pdb)"]],
     "knownModules": [true, true]}
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any

import httpx
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from .config import SymbolApiConfig, get_config, load_config
from .errors import MalformedRequest
from .fetcher import SymbolFetcher
from .resolver import SymbolResolver
from .store.base import SymbolCache
from .store.factory import create_cache
from .wire_contract import parse_symbol_request, validate_symbol_response

_LOGGER = logging.getLogger("symbolapi")


def _configure_logging() -> None:
    if _LOGGER.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _LOGGER.addHandler(handler)
    _LOGGER.setLevel(logging.INFO)


def _log_json(level: int, message: str, **fields: Any) -> None:
    payload = {"message": message, **fields}
    _LOGGER.log(level, json.dumps(payload, ensure_ascii=True))


def _get_version() -> str:
    try:
        return version("symbolapi")
    except PackageNotFoundError:
        return "unknown"


def create_app(
    config: SymbolApiConfig | None = None,
    *,
    cache: SymbolCache | None = None,
    client: httpx.Client | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _configure_logging()
        cfg = config or get_config()
        app.state.config = cfg
        app.state.cache = cache or create_cache(cfg)
        app.state.fetcher = SymbolFetcher(
            app.state.cache,
            cfg.symbol_urls,
            timeout_s=cfg.fetch_timeout_s,
            max_bytes=cfg.max_symbol_bytes,
            client=client,
        )
        app.state.resolver = SymbolResolver(app.state.fetcher, max_workers=cfg.max_workers)
        app.state.start_time = time.monotonic()
        _log_json(
            logging.INFO,
            "service.started",
            symbol_urls=list(cfg.symbol_urls),
            cache_backend=cfg.cache_backend,
            max_workers=cfg.max_workers,
            config_digest=cfg.config_digest,
        )
        try:
            yield
        finally:
            app.state.resolver.close()
            app.state.fetcher.close()
            app.state.cache.close()

    app = FastAPI(title="symbolapi", lifespan=lifespan)

    @app.middleware("http")
    async def request_logging(request: Request, call_next):
        request_id = request.headers.get("x-request-id", "").strip() or uuid.uuid4().hex
        request.state.request_id = request_id
        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            latency_ms = int((time.monotonic() - start) * 1000)
            _log_json(
                logging.ERROR,
                "request.failed",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                latency_ms=latency_ms,
            )
            raise
        latency_ms = int((time.monotonic() - start) * 1000)
        response.headers["x-request-id"] = request_id
        _log_json(
            logging.INFO,
            "request.completed",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=latency_ms,
        )
        return response

    @app.get("/", response_class=PlainTextResponse)
    async def identify() -> str:
        return f"symbolapi {_get_version()}"

    @app.post("/")
    async def symbolicate(request: Request) -> dict[str, Any]:
        raw = await request.body()
        try:
            body = json.loads(raw)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="invalid JSON body") from exc
        try:
            symbol_request = parse_symbol_request(body)
        except MalformedRequest as exc:
            _log_json(
                logging.WARNING,
                "request.malformed",
                request_id=request.state.request_id,
                error=str(exc),
            )
            return JSONResponse(status_code=400, content={"detail": str(exc), "code": exc.code})
        result = await asyncio.to_thread(app.state.resolver.symbolicate, symbol_request)
        _log_json(
            logging.INFO,
            "symbolicate.completed",
            request_id=request.state.request_id,
            version=symbol_request.version,
            modules=len(symbol_request.memory_map),
            frames=len(result["symbolicatedStacks"][0]),
            unknown_modules=result["knownModules"].count(False),
        )
        try:
            return validate_symbol_response(result)
        except ValueError as exc:
            raise HTTPException(status_code=500, detail=f"invalid response: {exc}") from exc

    @app.get("/healthz")
    async def healthz() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/debug/config")
    async def debug_config() -> dict[str, Any]:
        return _build_debug_config(app)

    @app.api_route(
        "/{path:path}",
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"],
        include_in_schema=False,
    )
    async def not_allowed(path: str) -> None:
        raise HTTPException(status_code=405, detail="Method Not Allowed")

    return app


def _build_debug_config(app: FastAPI) -> dict[str, Any]:
    cfg: SymbolApiConfig = app.state.config
    uptime_s = int(time.monotonic() - app.state.start_time)
    return {
        "version": _get_version(),
        "schema_version": cfg.schema_version,
        "config_digest": cfg.config_digest,
        "symbol_urls": list(cfg.symbol_urls),
        "cache_backend": cfg.cache_backend,
        "cache_dir": _redact_cache_dir(cfg.cache_dir),
        "fetch_timeout_ms": cfg.fetch_timeout_ms,
        "max_symbol_bytes": cfg.max_symbol_bytes,
        "max_workers": cfg.max_workers,
        "uptime_s": uptime_s,
    }


def _redact_cache_dir(cache_dir: Path) -> str:
    return cache_dir.name or "unknown"


def main() -> None:
    args = _parse_args()
    if args.config:
        os.environ["SYMBOLAPI_CONFIG"] = str(args.config)
    app = create_app(load_config())
    uvicorn.run(app, host=args.host, port=args.port, reload=False)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="symbolapi")
    sub = parser.add_subparsers(dest="command", required=True)
    serve = sub.add_parser("serve")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8080)
    serve.add_argument("--config", default=None)
    return parser.parse_args()


app = create_app()
