import asyncio
import json
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, Field

load_dotenv(override=False)

from sceneboard import __version__
from sceneboard.config.config import config
from sceneboard.errors import (
    AssetError,
    BusyError,
    ConfigurationError,
    ExportError,
    GenerationError,
    InvalidRequestError,
    SceneNotFoundError,
)
from sceneboard.gen_tools.base import get_replicate_api_token, setup_logger
from sceneboard.gen_tools.image_gen import text2image_generate
from sceneboard.gen_tools.video_gen import image2video_generate
from sceneboard.scenes import ExportedFile, GenerationParams, JobKind, StoryboardSession
from sceneboard.scenes.service import describe_error
from sceneboard.scenes.session import build_backend
from sceneboard.utils.logging_setup import log_context

logger = setup_logger(__name__)

app = FastAPI(title="Sceneboard API", version=__version__)

# CORS middleware setting
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

global_session: Optional[StoryboardSession] = None


def get_session() -> StoryboardSession:
    global global_session

    if global_session is None:
        global_session = StoryboardSession(build_backend(config))
        logger.info(f"Storyboard session {global_session.session_id} initialized")

    return global_session


class GenerateImageRequest(BaseModel):
    prompt: Optional[str] = None
    style: Optional[str] = None
    aspect_ratio: Optional[str] = Field(None, alias="aspectRatio")
    quality: Optional[str] = None

    class Config:
        populate_by_name = True


class AnimateSceneRequest(BaseModel):
    prompt: Optional[str] = None
    first_frame_image: Optional[str] = None
    prompt_optimizer: Optional[bool] = None


class ParamsRequest(BaseModel):
    style: Optional[str] = None
    aspect_ratio: Optional[str] = Field(None, alias="aspectRatio")
    quality: Optional[str] = None

    class Config:
        populate_by_name = True


class ScriptRequest(ParamsRequest):
    script: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    timestamp: str


def error_response(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    body = {"error": error}
    if details:
        body["details"] = details
    return JSONResponse(body, status_code=status_code)


def file_response(exported: ExportedFile) -> Response:
    return Response(
        content=exported.content,
        media_type=exported.media_type,
        headers={"Content-Disposition": f'attachment; filename="{exported.filename}"'},
    )


def _missing_token_response() -> Optional[JSONResponse]:
    try:
        get_replicate_api_token()
    except ConfigurationError as e:
        logger.error("REPLICATE_API_TOKEN is not configured")
        return error_response(500, str(e))
    return None


@app.post("/generate-image")
async def generate_image(request: GenerateImageRequest):
    """Text prompt in, inline-encoded image out."""
    missing = _missing_token_response()
    if missing:
        return missing

    if not request.prompt:
        return error_response(400, "Prompt is required")

    try:
        params = GenerationParams.from_request(request.style, request.aspect_ratio, request.quality)
    except InvalidRequestError as e:
        return error_response(400, str(e))

    logger.info(f"POST /generate-image - prompt: {request.prompt[:50]}...")
    try:
        resp = await asyncio.to_thread(
            text2image_generate,
            request.prompt,
            style=params.style.value,
            aspect_ratio=params.aspect_ratio.value,
            quality=params.quality.value,
        )
    except Exception as e:
        logger.error(f"Error details: {describe_error(e)}")
        return error_response(500, "Failed to generate image", describe_error(e))

    return {"imageUrl": resp.output_url, "originalUrl": getattr(resp, "original_url", None)}


@app.post("/animate-scene")
async def animate_scene(request: AnimateSceneRequest):
    """Prompt plus first-frame image in, video URL out."""
    missing = _missing_token_response()
    if missing:
        return missing

    if not request.prompt or not request.first_frame_image:
        return error_response(400, "Prompt and first frame image are required")

    logger.info(f"POST /animate-scene - prompt: {request.prompt[:50]}...")
    try:
        resp = await asyncio.to_thread(
            image2video_generate,
            request.prompt,
            request.first_frame_image,
            request.prompt_optimizer,
        )
    except Exception as e:
        logger.error(f"Error details: {describe_error(e)}")
        return error_response(500, "Failed to generate animation", describe_error(e))

    return {"videoUrl": resp.output_url}


@app.get("/session")
async def session_state(session: StoryboardSession = Depends(get_session)):
    return session.snapshot()


@app.put("/session/params")
async def update_params(request: ParamsRequest, session: StoryboardSession = Depends(get_session)):
    try:
        params = session.set_params(request.style, request.aspect_ratio, request.quality)
    except InvalidRequestError as e:
        return error_response(400, str(e))
    return params.to_dict()


@app.post("/session/generate")
async def generate_scenes(request: ScriptRequest, session: StoryboardSession = Depends(get_session)):
    with log_context(session_id=session.session_id):
        try:
            if request.style or request.aspect_ratio or request.quality:
                session.set_params(request.style, request.aspect_ratio, request.quality)
            scenes = await session.generate(request.script or "")
        except InvalidRequestError as e:
            return error_response(400, str(e))
        except BusyError as e:
            return error_response(409, str(e))
        except GenerationError as e:
            return error_response(500, str(e), e.details)

    return {"phase": session.phase.value, "scenes": [scene.to_dict() for scene in scenes]}


async def run_scene_job(session: StoryboardSession, kind: JobKind, scene_id: int):
    with log_context(session_id=session.session_id, scene_id=scene_id, operation=kind.value):
        try:
            task = session.orchestrator.submit(kind, scene_id)
        except SceneNotFoundError as e:
            return error_response(404, str(e))
        if task is None:
            return error_response(409, f"Scene {scene_id} is already busy with {kind.value}")

        # Shielded so a dropped client connection does not cancel the operation.
        try:
            ok = await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            return error_response(409, f"Scene {scene_id} {kind.value} was cancelled")

    if not ok:
        reason = session.orchestrator.last_errors.get((kind, scene_id))
        return error_response(500, f"Failed to {kind.value} scene {scene_id}", reason)
    scene = session.store.get(scene_id)
    return {"ok": True, "scene": scene.to_dict() if scene else None}


@app.post("/session/scenes/{scene_id}/regenerate")
async def regenerate_scene(scene_id: int, session: StoryboardSession = Depends(get_session)):
    return await run_scene_job(session, JobKind.REGENERATE, scene_id)


@app.post("/session/scenes/{scene_id}/animate")
async def animate_session_scene(scene_id: int, session: StoryboardSession = Depends(get_session)):
    return await run_scene_job(session, JobKind.ANIMATE, scene_id)


@app.delete("/session/scenes/{scene_id}/jobs/{kind}")
async def cancel_scene_job(scene_id: int, kind: JobKind, session: StoryboardSession = Depends(get_session)):
    return {"cancelled": session.orchestrator.cancel(kind, scene_id)}


@app.get("/session/scenes/{scene_id}/export")
async def export_scene(scene_id: int, session: StoryboardSession = Depends(get_session)):
    scene = session.store.get(scene_id)
    if scene is None:
        return error_response(404, f"Scene {scene_id} not found")
    try:
        exported = await session.exporter.export_scene(scene)
    except AssetError as e:
        return error_response(500, "Failed to download scene", str(e))
    return file_response(exported)


@app.get("/session/export")
async def export_all_scenes(session: StoryboardSession = Depends(get_session)):
    scenes = session.store.list()
    if not scenes:
        return error_response(400, "No scenes to export")
    try:
        exported = await session.exporter.export_all(scenes)
    except ExportError as e:
        return error_response(500, "Failed to export scenes", str(e))
    return file_response(exported)


@app.post("/session/new")
async def new_project(session: StoryboardSession = Depends(get_session)):
    with log_context(session_id=session.session_id, operation="new_project"):
        try:
            started = session.new_project()
        except BusyError as e:
            return error_response(409, str(e))
    return {"started": started, **session.snapshot()}


async def stream_session_events(session: StoryboardSession):
    """
    Stream store changes and notifications as SSE.

    The first event is a full snapshot so a client can render without a
    separate GET /session.
    """
    queue = session.events.subscribe()
    try:
        snapshot = json.dumps({"type": "snapshot", **session.snapshot()}, ensure_ascii=False)
        yield f"data: {snapshot}\n\n".encode("utf-8")
        while True:
            event = await queue.get()
            logger.debug(f"Sending SSE event: {event.get('type', 'unknown')}")
            yield f"data: {json.dumps(event, ensure_ascii=False)}\n\n".encode("utf-8")
    finally:
        session.events.unsubscribe(queue)


@app.get("/session/events")
async def session_events(session: StoryboardSession = Depends(get_session)):
    return StreamingResponse(
        stream_session_events(session),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.get("/health")
async def health():
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now().isoformat()
    )


@app.get("/")
async def root():
    return {"message": "Sceneboard API is running"}


def main():
    import uvicorn
    uvicorn.run(app, host=config.get("server_host", "0.0.0.0"), port=int(config.get("server_port", 8000)))


if __name__ == "__main__":
    main()
