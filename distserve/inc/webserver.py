# distserve/inc/webserver.py
from __future__ import annotations
import logging
from typing import Any, Dict, Optional
from aiohttp import web

from distserve.inc.assets import AssetStore
from distserve.inc.cache_policy import CachePolicy, policy_for
from distserve.inc.capture import ResponseCapture, record_status
from distserve.inc.logging import AccessLogger
from distserve.webmods import static

log = logging.getLogger("distserve")

SECURITY_HEADERS = {
    "Cross-Origin-Embedder-Policy": "require-corp",
    "Cross-Origin-Opener-Policy": "same-origin",
}

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080

policy_key = web.AppKey("cache_policy", CachePolicy)
access_key = web.AppKey("access_logger", AccessLogger)

def _cfg(settings=None) -> Dict[str, Any]:
    if settings is None:
        return {"host": DEFAULT_HOST, "port": DEFAULT_PORT}
    host = settings.get("WEB.listen_host", DEFAULT_HOST)
    port = settings.get("WEB.listen_port", DEFAULT_PORT, int)
    return {"host": host, "port": port}

def _as_response(exc: web.HTTPException) -> web.Response:
    headers = {k: v for k, v in exc.headers.items() if k.lower() not in ("content-type", "content-length")}
    return web.Response(status=exc.status, text=exc.text, headers=headers)

# ---------- middlewares (outermost first) ----------
@web.middleware
async def access_log_mw(request: web.Request, handler):
    capture = ResponseCapture.begin(request)
    try:
        resp = await handler(request)
        # flush here so the record below sees the real status and full latency
        await resp.prepare(request)
        await resp.write_eof()
        return resp
    finally:
        request.app[access_key].log_request(request, capture)

@web.middleware
async def security_headers_mw(request: web.Request, handler):
    try:
        resp = await handler(request)
    except web.HTTPException as exc:
        resp = _as_response(exc)
    except Exception:
        log.exception(f"[web] unhandled error serving {request.method} {request.path}")
        resp = web.Response(status=500, text="500 internal server error")
    resp.headers.update(SECURITY_HEADERS)
    return resp

@web.middleware
async def cache_policy_mw(request: web.Request, handler):
    resp = await handler(request)
    directive = request.app[policy_key].classify(request.path)
    if directive and resp.status < 400:
        resp.headers["Cache-Control"] = directive
    return resp

async def drop_cache_on_error(request: web.Request, response: web.StreamResponse):
    # FileResponse settles its status (416, 404, 403) only while preparing
    if response.status >= 400:
        response.headers.popall("Cache-Control", None)

def create_app(store: AssetStore, policy: Optional[CachePolicy] = None,
               access_logger: Optional[AccessLogger] = None) -> web.Application:
    """Build the request pipeline once; it carries no per-request state."""
    app = web.Application(middlewares=[access_log_mw, security_headers_mw, cache_policy_mw])
    app[policy_key] = policy or policy_for(None)
    app[access_key] = access_logger or AccessLogger()
    app.on_response_prepare.append(drop_cache_on_error)
    app.on_response_prepare.append(record_status)
    static.setup(app, store)
    return app

class DistWebServer:
    def __init__(self, store: AssetStore, settings=None, policy: Optional[CachePolicy] = None,
                 access_logger: Optional[AccessLogger] = None):
        self._cfg = _cfg(settings)
        if policy is None and settings is not None:
            policy = policy_for(settings.get("CACHE.policy", None))
        self.app = create_app(store, policy, access_logger)
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    @property
    def policy(self) -> CachePolicy:
        return self.app[policy_key]

    # ---------- Boot / Stop ----------
    async def start(self):
        host, port = self._cfg["host"], self._cfg["port"]
        # our own access log replaces aiohttp's
        self._runner = web.AppRunner(self.app, access_log=None)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()
        log.info(f"[web] listening on {host}:{port} (cache policy={self.policy.name})")

    async def stop(self):
        if self._runner:
            await self._runner.cleanup()
            self._runner, self._site = None, None
        log.info("[web] stopped")
