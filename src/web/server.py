"""Async HTTP API behind the anniversary page.

One aiohttp application serves the countdown, the slideshow state machine,
uploads, the timeline, notes, and (in local mode) the stored images
themselves.  Engine errors are turned into JSON error bodies here; nothing
below this layer knows about HTTP.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Any

from aiohttp import web

from src.backend.local import LocalObjectStorage
from src.config import settings
from src.countdown import format_date, next_anniversary, time_left
from src.memories.errors import FetchError, MemoriesError, UploadError
from src.memories.models import Memory
from src.web.context import AppContext

logger = logging.getLogger(__name__)

CONTEXT_KEY = web.AppKey("context", AppContext)


def _ctx(request: web.Request) -> AppContext:
    return request.app[CONTEXT_KEY]


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


async def _read_json(request: web.Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except Exception:
        raise web.HTTPBadRequest(
            text='{"error": "invalid JSON"}', content_type="application/json"
        ) from None
    if not isinstance(payload, dict):
        raise web.HTTPBadRequest(
            text='{"error": "expected a JSON object"}', content_type="application/json"
        )
    return payload


def _text(payload: dict[str, Any], key: str, default: str | None = None) -> str | None:
    """String field of a JSON body; missing or null gives *default*."""
    value = payload.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise web.HTTPBadRequest(
            text=json.dumps({"error": f"{key} must be a string"}),
            content_type="application/json",
        )
    return value


def _parse_date(value: Any) -> date | datetime | None:
    if not value:
        return None
    text = str(value)
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


# -- Health / countdown --------------------------------------------------------


async def _health(request: web.Request) -> web.Response:
    """GET /health — basic liveness check."""
    return web.json_response({"status": "ok"})


async def _countdown(request: web.Request) -> web.Response:
    target = next_anniversary()
    return web.json_response(
        {
            "next_anniversary": target.isoformat(),
            "next_anniversary_display": format_date(target),
            **time_left(target).to_dict(),
        }
    )


# -- Memories / slideshow ------------------------------------------------------


def _memory_json(memory: Memory) -> dict[str, Any]:
    return {**memory.model_dump(), "renderable": memory.renderable}


async def _list_memories(request: web.Request) -> web.Response:
    slideshow = _ctx(request).slideshow
    return web.json_response(
        {
            "status": slideshow.status,
            "error": slideshow.error,
            "memories": [_memory_json(m) for m in slideshow.memories],
        }
    )


async def _refresh_memories(request: web.Request) -> web.Response:
    slideshow = _ctx(request).slideshow
    await slideshow.refresh()
    if slideshow.status == "error":
        return web.json_response(slideshow.state(), status=502)
    return web.json_response(slideshow.state())


async def _slideshow_state(request: web.Request) -> web.Response:
    return web.json_response(_ctx(request).slideshow.state())


async def _slideshow_action(request: web.Request) -> web.Response:
    """POST /api/slideshow/{action} — navigation, toggles and input events."""
    slideshow = _ctx(request).slideshow
    action = request.match_info["action"]

    if action in ("next", "prev"):
        getattr(slideshow, action)()
    elif action == "goto":
        payload = await _read_json(request)
        try:
            slideshow.go_to(int(payload.get("index", 0)))
        except (TypeError, ValueError):
            return _error("index must be an integer", 400)
    elif action == "autoplay":
        slideshow.toggle_autoplay()
    elif action == "fullscreen":
        slideshow.toggle_fullscreen()
    elif action == "info":
        slideshow.toggle_info()
    elif action == "key":
        payload = await _read_json(request)
        slideshow.handle_key(str(payload.get("key", "")))
    elif action == "swipe":
        payload = await _read_json(request)
        slideshow.handle_swipe(str(payload.get("direction", "")))
    elif action == "bookmark":
        if slideshow.toggle_bookmark() is None:
            return _error("no slide is showing", 409)
    else:
        return _error(f"unknown action: {action}", 404)
    return web.json_response(slideshow.state())


async def _slide_loaded(request: web.Request) -> web.Response:
    """POST /api/slideshow/slides/{id}/{result} — the page reports an image load."""
    slideshow = _ctx(request).slideshow
    memory_id = request.match_info["id"]
    if request.match_info["result"] == "loaded":
        slideshow.mark_loaded(memory_id)
    else:
        slideshow.mark_failed(memory_id)
    return web.json_response({"ok": True})


async def _share(request: web.Request) -> web.Response:
    result = await _ctx(request).slideshow.share()
    return web.json_response(
        {"supported": result.supported, "shared": result.shared, "error": result.error}
    )


async def _download(request: web.Request) -> web.Response:
    info = _ctx(request).slideshow.download()
    if info is None:
        return _error("no image to download", 409)
    return web.json_response({"url": info.url, "file_name": info.file_name})


# -- Uploads -------------------------------------------------------------------


async def _upload(request: web.Request) -> web.Response:
    """POST /api/uploads — multipart form with ``file`` plus metadata fields."""
    ctx = _ctx(request)
    try:
        form = await request.post()
    except Exception:
        return _error("expected multipart form data", 400)

    upload = form.get("file")
    if not isinstance(upload, web.FileField):
        return _error("a file is required", 400)

    metadata = {
        "display_name": str(form.get("display_name", "")).strip(),
        "description": str(form.get("description", "")) or None,
        "date_taken": _parse_date(form.get("date_taken")),
        "location": str(form.get("location", "")) or None,
    }
    try:
        memory = await ctx.uploader.upload(
            upload.file.read(),
            upload.filename,
            metadata,
            content_type=upload.content_type,
        )
    except UploadError as exc:
        logger.warning("Upload rejected: %s", exc)
        return _error(str(exc), 400)

    await ctx.slideshow.refresh()
    return web.json_response({"memory": _memory_json(memory)}, status=201)


# -- Timeline ------------------------------------------------------------------


async def _timeline_list(request: web.Request) -> web.Response:
    try:
        records = await _ctx(request).timeline.list()
    except FetchError as exc:
        return _error(str(exc), 502)
    return web.json_response({"timeline": [r.model_dump() for r in records]})


async def _timeline_add(request: web.Request) -> web.Response:
    ctx = _ctx(request)
    payload = await _read_json(request)
    when = _parse_date(payload.get("date"))
    if when is None:
        return _error("a valid date is required", 400)
    try:
        record = await ctx.timeline.add(
            when, _text(payload, "title", ""), _text(payload, "description", "")
        )
    except MemoriesError as exc:
        return _error(str(exc), 400)
    await ctx.slideshow.refresh()
    return web.json_response({"entry": record.model_dump()}, status=201)


async def _timeline_edit(request: web.Request) -> web.Response:
    ctx = _ctx(request)
    payload = await _read_json(request)
    when = _parse_date(payload.get("date")) if "date" in payload else None
    if "date" in payload and when is None:
        return _error("date must be an ISO date", 400)
    try:
        updated = await ctx.timeline.edit(
            request.match_info["id"],
            when=when,
            title=_text(payload, "title"),
            description=_text(payload, "description"),
        )
    except MemoriesError as exc:
        return _error(str(exc), 400)
    if not updated:
        return _error("not found", 404)
    await ctx.slideshow.refresh()
    return web.json_response({"ok": True})


async def _timeline_delete(request: web.Request) -> web.Response:
    ctx = _ctx(request)
    try:
        deleted = await ctx.timeline.delete(request.match_info["id"])
    except MemoriesError as exc:
        return _error(str(exc), 502)
    if not deleted:
        return _error("not found", 404)
    await ctx.slideshow.refresh()
    return web.json_response({"ok": True})


async def _timeline_resolve_image(request: web.Request) -> web.Response:
    """POST /api/timeline/{id}/resolve-image — the card's "find image" action."""
    ctx = _ctx(request)
    record_id = request.match_info["id"]
    try:
        records = await ctx.timeline.list()
    except FetchError as exc:
        return _error(str(exc), 502)
    record = next((r for r in records if r.id == record_id), None)
    if record is None:
        return _error("not found", 404)

    memory = Memory(
        id=record.id,
        url=record.image_url,
        display_name=record.title,
        description=record.description,
        date=record.date,
        date_taken=record.raw_date,
        source="timeline",
    )
    resolved = await ctx.resolver.resolve_image(memory)
    if resolved is None:
        return web.json_response({"url": None, "strategy": None, "best_guess": False})
    return web.json_response(
        {
            "url": resolved.url,
            "strategy": resolved.strategy,
            "confidence": resolved.confidence,
            "best_guess": resolved.best_guess,
        }
    )


# -- Notes ---------------------------------------------------------------------


async def _notes_list(request: web.Request) -> web.Response:
    try:
        notes = await _ctx(request).notes.list()
    except FetchError as exc:
        return _error(str(exc), 502)
    return web.json_response({"notes": [n.model_dump() for n in notes]})


async def _notes_add(request: web.Request) -> web.Response:
    payload = await _read_json(request)
    try:
        note = await _ctx(request).notes.add(_text(payload, "content", ""))
    except MemoriesError as exc:
        return _error(str(exc), 400)
    return web.json_response({"note": note.model_dump()}, status=201)


async def _notes_delete(request: web.Request) -> web.Response:
    try:
        deleted = await _ctx(request).notes.delete(request.match_info["id"])
    except MemoriesError as exc:
        return _error(str(exc), 502)
    if not deleted:
        return _error("not found", 404)
    return web.json_response({"ok": True})


# -- Local storage -------------------------------------------------------------


async def _storage_object(request: web.Request) -> web.StreamResponse:
    """GET /storage/{bucket}/{key} — serve a local-mode object if its bucket is public."""
    storage = _ctx(request).backend.storage
    if not isinstance(storage, LocalObjectStorage):
        raise web.HTTPNotFound()
    bucket = request.match_info["bucket"]
    if not storage.is_public(bucket):
        raise web.HTTPNotFound()
    path = storage.resolve(bucket, request.match_info["key"])
    if not path.is_file():
        raise web.HTTPNotFound()

    response = web.FileResponse(path)
    download = request.query.get("download")
    if download:
        safe = LocalObjectStorage.sanitize_key(download)
        response.headers["Content-Disposition"] = f'attachment; filename="{safe}"'
    return response


def create_web_app(ctx: AppContext) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application(client_max_size=settings.upload_max_bytes + 1024 * 1024)
    app[CONTEXT_KEY] = ctx

    app.router.add_get("/health", _health)
    app.router.add_get("/api/countdown", _countdown)

    app.router.add_get("/api/memories", _list_memories)
    app.router.add_post("/api/memories/refresh", _refresh_memories)
    app.router.add_get("/api/slideshow", _slideshow_state)
    app.router.add_post("/api/slideshow/share", _share)
    app.router.add_get("/api/slideshow/download", _download)
    app.router.add_post("/api/slideshow/slides/{id}/{result:loaded|error}", _slide_loaded)
    app.router.add_post("/api/slideshow/{action}", _slideshow_action)

    app.router.add_post("/api/uploads", _upload)

    app.router.add_get("/api/timeline", _timeline_list)
    app.router.add_post("/api/timeline", _timeline_add)
    app.router.add_patch("/api/timeline/{id}", _timeline_edit)
    app.router.add_delete("/api/timeline/{id}", _timeline_delete)
    app.router.add_post("/api/timeline/{id}/resolve-image", _timeline_resolve_image)

    app.router.add_get("/api/notes", _notes_list)
    app.router.add_post("/api/notes", _notes_add)
    app.router.add_delete("/api/notes/{id}", _notes_delete)

    app.router.add_get("/storage/{bucket}/{key}", _storage_object)
    return app


class WebServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(self, ctx: AppContext, port: int | None = None) -> None:
        self._ctx = ctx
        self.port = port or settings.web_port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        await self._ctx.start()
        self._runner = web.AppRunner(create_web_app(self._ctx))
        await self._runner.setup()
        site = web.TCPSite(self._runner, settings.web_host, self.port)
        await site.start()
        logger.info("Web server listening on %s:%d", settings.web_host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Web server stopped")
        await self._ctx.stop()
