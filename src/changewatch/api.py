"""REST routes over the monitoring service.

Handlers parse the request, call one service or store method, and shape the
JSON response. ChangewatchError is translated to an error envelope by a
single exception handler.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from changewatch.errors import ChangewatchError, ErrorCode, InvalidInputError, NotFoundError
from changewatch.models.analysis import AnalysisResult

if TYPE_CHECKING:
    from collections.abc import Callable
    from contextlib import AbstractAsyncContextManager

    from starlette.requests import Request

    from changewatch.state import AppState

log = structlog.get_logger()

_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
    ErrorCode.PARSE_FAILED: 422,
    ErrorCode.FETCH_FAILED: 502,
    ErrorCode.NOT_CONFIGURED: 503,
}


def _state(request: Request) -> AppState:
    return request.app.state.changewatch


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except json.JSONDecodeError as exc:
        raise InvalidInputError("Request body must be valid JSON") from exc
    if not isinstance(body, dict):
        raise InvalidInputError("Request body must be a JSON object")
    return body


def _require_str(body: dict[str, Any], field: str) -> str:
    value = body.get(field)
    if not isinstance(value, str) or not value:
        raise InvalidInputError(f"'{field}' is required")
    return value


def _setting_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


async def _handle_error(request: Request, exc: ChangewatchError) -> Response:
    log.warning(
        "request_error",
        path=request.url.path,
        code=exc.code,
        message=exc.message,
        recoverable=exc.recoverable,
    )
    return JSONResponse(exc.to_dict(), status_code=_STATUS_BY_CODE.get(exc.code, 500))


# ---------------------------------------------------------------------------
# Health and settings
# ---------------------------------------------------------------------------


async def health(request: Request) -> Response:
    return JSONResponse({"status": "ok"})


async def list_settings(request: Request) -> Response:
    return JSONResponse(await _state(request).preferences.all())


async def update_settings(request: Request) -> Response:
    body = await _json_body(request)
    if any(value is None for value in body.values()):
        raise InvalidInputError("Setting values must not be null")
    await _state(request).monitor.update_settings(
        {key: _setting_value(value) for key, value in body.items()}
    )
    return JSONResponse({"success": True})


async def get_setting(request: Request) -> Response:
    key = request.path_params["key"]
    return JSONResponse({"value": await _state(request).preferences.get(key)})


async def set_setting(request: Request) -> Response:
    key = request.path_params["key"]
    body = await _json_body(request)
    if body.get("value") is None:
        raise InvalidInputError("'value' is required")
    await _state(request).monitor.update_setting(key, _setting_value(body["value"]))
    return JSONResponse({"success": True})


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


async def check_all(request: Request) -> Response:
    outcomes = await _state(request).monitor.trigger_check()
    return JSONResponse({"success": True, "outcomes": outcomes})


async def check_source(request: Request) -> Response:
    source_id = request.path_params["source_id"]
    outcome = await _state(request).monitor.trigger_check_for_source(source_id)
    return JSONResponse({"success": True, "outcome": outcome})


async def monitor_status(request: Request) -> Response:
    status = await _state(request).monitor.get_status()
    return JSONResponse(status.model_dump(mode="json"))


async def monitor_history(request: Request) -> Response:
    raw_limit = request.query_params.get("limit", "20")
    try:
        limit = int(raw_limit)
    except ValueError as exc:
        raise InvalidInputError("limit must be a positive integer") from exc
    records = await _state(request).monitor.list_history(limit)
    return JSONResponse([record.model_dump(mode="json") for record in records])


async def notify_latest(request: Request) -> Response:
    body = await _json_body(request) if await request.body() else {}
    source, version, outcome = await _state(request).monitor.notify_latest(
        source_id=body.get("source_id"), voice=body.get("voice")
    )
    success = outcome == "notified"
    return JSONResponse(
        {"success": success, "source_id": source.id, "version": version, "outcome": outcome},
        status_code=200 if success else 502,
    )


async def send_changelog(request: Request) -> Response:
    body = await _json_body(request)
    try:
        analysis = AnalysisResult.model_validate(body)
    except ValidationError as exc:
        raise InvalidInputError(f"Invalid analysis: {exc.error_count()} validation errors") from exc
    if not await _state(request).monitor.send_analysis(analysis):
        return JSONResponse({"success": False, "error": "Failed to send email"}, status_code=502)
    return JSONResponse({"success": True})


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


async def list_sources(request: Request) -> Response:
    sources = await _state(request).registry.list_all()
    return JSONResponse([source.model_dump(mode="json") for source in sources])


async def create_source(request: Request) -> Response:
    body = await _json_body(request)
    source = await _state(request).registry.create(
        _require_str(body, "name"), _require_str(body, "url")
    )
    return JSONResponse(source.model_dump(mode="json"), status_code=201)


async def test_source_url(request: Request) -> Response:
    body = await _json_body(request)
    result = await _state(request).monitor.test_url(_require_str(body, "url"))
    return JSONResponse(result.model_dump(mode="json", exclude_none=True))


async def get_source(request: Request) -> Response:
    source = await _state(request).registry.get(request.path_params["source_id"])
    return JSONResponse(source.model_dump(mode="json"))


async def update_source(request: Request) -> Response:
    body = await _json_body(request)
    is_active = body.get("is_active")
    if is_active is not None and not isinstance(is_active, bool):
        raise InvalidInputError("'is_active' must be a boolean")
    await _state(request).registry.update(
        request.path_params["source_id"],
        name=body.get("name"),
        url=body.get("url"),
        is_active=is_active,
    )
    return JSONResponse({"success": True})


async def delete_source(request: Request) -> Response:
    await _state(request).registry.delete(request.path_params["source_id"])
    return JSONResponse({"success": True})


async def source_changelog(request: Request) -> Response:
    source, markdown = await _state(request).monitor.preview_source(
        request.path_params["source_id"]
    )
    return JSONResponse({"markdown": markdown, "source": source.model_dump(mode="json")})


# ---------------------------------------------------------------------------
# Audio cache
# ---------------------------------------------------------------------------


async def list_audio(request: Request) -> Response:
    entries = await _state(request).cache.list_audio()
    return JSONResponse([entry.model_dump(mode="json") for entry in entries])


async def save_audio(request: Request) -> Response:
    body = await _json_body(request)
    text_hash = _require_str(body, "text_hash")
    voice = _require_str(body, "voice")
    try:
        audio_data = base64.b64decode(_require_str(body, "audio_data"), validate=True)
    except binascii.Error as exc:
        raise InvalidInputError("'audio_data' must be base64") from exc
    entry_id = await _state(request).cache.set_audio(text_hash, voice, audio_data)
    if entry_id is None:
        return JSONResponse({"error": "Failed to save audio"}, status_code=500)
    return JSONResponse({"success": True, "id": entry_id})


async def get_audio(request: Request) -> Response:
    entry = await _state(request).cache.get_audio(
        request.path_params["text_hash"], request.path_params["voice"]
    )
    if entry is None:
        raise NotFoundError("Audio not found")
    return Response(entry.audio_data, media_type="audio/wav")


async def delete_audio(request: Request) -> Response:
    await _state(request).cache.delete_audio(request.path_params["entry_id"])
    return JSONResponse({"success": True})


# ---------------------------------------------------------------------------
# Analysis cache
# ---------------------------------------------------------------------------


async def list_analyses(request: Request) -> Response:
    rows = await _state(request).cache.list_analyses()
    return JSONResponse(
        [{"version": version, "created_at": created.isoformat()} for version, created in rows]
    )


async def get_analysis(request: Request) -> Response:
    entry = await _state(request).cache.get_analysis(request.path_params["version"])
    if entry is None:
        raise NotFoundError("Analysis not cached")
    return JSONResponse(
        {
            "analysis": entry.analysis.model_dump(mode="json"),
            "cached": True,
            "cached_at": entry.created_at.isoformat(),
        }
    )


async def save_analysis(request: Request) -> Response:
    version = request.path_params["version"]
    body = await _json_body(request)
    try:
        analysis = AnalysisResult.model_validate(body.get("analysis"))
    except ValidationError as exc:
        raise InvalidInputError(f"Invalid analysis: {exc.error_count()} validation errors") from exc
    await _state(request).cache.set_analysis(version, analysis)
    return JSONResponse({"success": True})


ROUTES = [
    Route("/api/health", health, methods=["GET"]),
    Route("/api/settings", list_settings, methods=["GET"]),
    Route("/api/settings", update_settings, methods=["POST"]),
    Route("/api/settings/{key}", get_setting, methods=["GET"]),
    Route("/api/settings/{key}", set_setting, methods=["POST"]),
    Route("/api/monitor/check", check_all, methods=["POST"]),
    Route("/api/monitor/check/{source_id}", check_source, methods=["POST"]),
    Route("/api/monitor/status", monitor_status, methods=["GET"]),
    Route("/api/monitor/history", monitor_history, methods=["GET"]),
    Route("/api/monitor/notify", notify_latest, methods=["POST"]),
    Route("/api/send-changelog", send_changelog, methods=["POST"]),
    Route("/api/sources", list_sources, methods=["GET"]),
    Route("/api/sources", create_source, methods=["POST"]),
    Route("/api/sources/test", test_source_url, methods=["POST"]),
    Route("/api/sources/{source_id}", get_source, methods=["GET"]),
    Route("/api/sources/{source_id}", update_source, methods=["PATCH"]),
    Route("/api/sources/{source_id}", delete_source, methods=["DELETE"]),
    Route("/api/sources/{source_id}/changelog", source_changelog, methods=["GET"]),
    Route("/api/audio", list_audio, methods=["GET"]),
    Route("/api/audio", save_audio, methods=["POST"]),
    Route("/api/audio/{text_hash}/{voice}", get_audio, methods=["GET"]),
    Route("/api/audio/{entry_id}", delete_audio, methods=["DELETE"]),
    Route("/api/analysis", list_analyses, methods=["GET"]),
    Route("/api/analysis/{version}", get_analysis, methods=["GET"]),
    Route("/api/analysis/{version}", save_analysis, methods=["POST"]),
]


def create_app(
    state: AppState | None = None,
    *,
    lifespan: Callable[[Starlette], AbstractAsyncContextManager[None]] | None = None,
) -> Starlette:
    """Build the Starlette app. Pass ``state`` directly or let ``lifespan`` attach it."""
    app = Starlette(
        routes=ROUTES,
        exception_handlers={ChangewatchError: _handle_error},
        lifespan=lifespan,
    )
    if state is not None:
        app.state.changewatch = state
    return app
