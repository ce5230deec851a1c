"""HTTP API: health, goal configuration and clips."""

from collections.abc import Callable
from typing import Any

from aiohttp import web
from pydantic import TypeAdapter, ValidationError

from .clips import ClipsCache, TwitchClip
from .events import WireEvent
from .goals import GoalsConfigUpdate, GoalsState
from .logger import get_logger

logger = get_logger(__name__)

GOALS_KEY = web.AppKey("goals", GoalsState)
CLIPS_KEY = web.AppKey("clips", ClipsCache)
PUBLISH_KEY = web.AppKey("publish", Callable[[WireEvent], int])
STATUS_KEY = web.AppKey("status", Callable[[], dict])

_clip_list = TypeAdapter(list[TwitchClip])


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"ok": False, "error": message}, status=status)


def _validation_message(e: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}" for err in e.errors(include_url=False)
    )


async def _json_body(request: web.Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise web.HTTPBadRequest(
            text='{"ok": false, "error": "Body must be valid JSON"}', content_type="application/json"
        ) from None


@web.middleware
async def cors_middleware(request: web.Request, handler):
    """Overlays run in a browser source on another origin."""
    if request.method == "OPTIONS":
        response = web.Response(status=204)
    else:
        response = await handler(request)
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return response


async def health(request: web.Request) -> web.Response:
    return web.json_response(request.app[STATUS_KEY]())


async def get_goals(request: web.Request) -> web.Response:
    goals = request.app[GOALS_KEY]
    return web.json_response({"ok": True, "goals": goals.counters.to_file_dict()})


async def post_goals_config(request: web.Request) -> web.Response:
    body = await _json_body(request)
    if not isinstance(body, dict):
        return _error(400, "Body must be a JSON object")

    try:
        update = GoalsConfigUpdate.model_validate(body)
    except ValidationError as e:
        logger.warning("Rejected goals config", error_count=e.error_count())
        return _error(400, _validation_message(e))

    goals = request.app[GOALS_KEY]
    counters = goals.apply_config(update)
    return web.json_response({"ok": True, "goals": counters.to_file_dict()})


async def post_clips_sync(request: web.Request) -> web.Response:
    body = await _json_body(request)
    if not isinstance(body, dict) or not isinstance(body.get("clips"), list):
        return _error(400, "Body must contain a 'clips' array")

    try:
        clips = _clip_list.validate_python(body["clips"])
    except ValidationError as e:
        logger.warning("Rejected clips sync", error_count=e.error_count())
        return _error(400, _validation_message(e))

    synced = request.app[CLIPS_KEY].sync(clips)
    request.app[PUBLISH_KEY](synced)
    payload = synced.model_dump(mode="json", by_alias=True)
    return web.json_response({"ok": True, **payload})


async def get_clips(request: web.Request) -> web.Response:
    cache = request.app[CLIPS_KEY]
    try:
        limit = int(request.query["limit"]) if "limit" in request.query else None
    except ValueError:
        limit = None

    clips = cache.get(limit)
    return web.json_response(
        {
            "ok": True,
            "count": len(clips),
            "total": len(cache),
            "syncedAt": cache.synced_at.isoformat() if cache.synced_at else None,
            "clips": [clip.model_dump(mode="json", by_alias=True) for clip in clips],
        }
    )


def create_api_app(
    goals: GoalsState,
    clips: ClipsCache,
    publish: Callable[[WireEvent], int],
    status: Callable[[], dict],
) -> web.Application:
    app = web.Application(middlewares=[cors_middleware])
    app[GOALS_KEY] = goals
    app[CLIPS_KEY] = clips
    app[PUBLISH_KEY] = publish
    app[STATUS_KEY] = status

    app.router.add_get("/api/health", health)
    app.router.add_get("/api/goals", get_goals)
    app.router.add_post("/api/goals/config", post_goals_config)
    app.router.add_post("/api/clips/sync", post_clips_sync)
    app.router.add_get("/api/clips", get_clips)
    return app


class ApiRunner:
    """HTTP runner with proper cleanup."""

    def __init__(self, runner: web.AppRunner, site: web.TCPSite):
        self.runner = runner
        self.site = site

    async def cleanup(self):
        """Clean up both site and runner."""
        try:
            await self.site.stop()
        except Exception as e:
            logger.warning("Site stop error (non-critical)", error=str(e))

        try:
            await self.runner.cleanup()
        except Exception as e:
            logger.warning("Runner cleanup error (non-critical)", error=str(e))


async def start_api(app: web.Application, host: str, port: int) -> ApiRunner:
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info("HTTP API available", url=f"http://{host}:{port}/api/health")
    return ApiRunner(runner, site)
