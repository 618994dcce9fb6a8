from __future__ import annotations
from aiohttp import web
from distserve.inc.assets import AssetNotFound, AssetStore

INDEX_FILE = "index.html"
NOT_FOUND_TEXT = "404 page not found"

store_key = web.AppKey("store", AssetStore)

# FileResponse guesses the rest from the file name
EXTRA_TYPES = {".wasm": "application/wasm"}


def not_found() -> web.Response:
    return web.Response(status=404, text=NOT_FOUND_TEXT)


def _redirect(req: web.Request, location: str) -> web.Response:
    # relative Location, resolved by the client against the request URL
    if req.query_string:
        location = f"{location}?{req.query_string}"
    return web.Response(status=301, headers={"Location": location})


def _extra_headers(rel: str) -> dict:
    dot = rel.rfind(".")
    ctype = EXTRA_TYPES.get(rel[dot:]) if dot > rel.rfind("/") else None
    return {"Content-Type": ctype} if ctype else {}


async def serve_asset(req: web.Request):
    store = req.app[store_key]
    path = req.path

    # canonical URL for an index page is its directory
    if path.endswith("/" + INDEX_FILE):
        return _redirect(req, "./")

    rel = path.lstrip("/")
    if store.is_dir(rel):
        if not path.endswith("/"):
            return _redirect(req, rel.rsplit("/", 1)[-1] + "/")
        rel = f"{rel.rstrip('/')}/{INDEX_FILE}".lstrip("/")
    elif path.endswith("/"):
        return not_found()

    try:
        asset = store.resolve(rel)
    except AssetNotFound:
        return not_found()

    # type, length, Last-Modified, 304, Range and HEAD are FileResponse's job
    return web.FileResponse(asset.path, headers=_extra_headers(rel))


def setup(app: web.Application, store: AssetStore):
    """Register the catch-all route (GET, with HEAD added by aiohttp)."""
    app[store_key] = store
    app.router.add_get("/{path:.*}", serve_asset, name="assets")
