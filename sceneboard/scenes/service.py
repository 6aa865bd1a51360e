from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Tuple

from sceneboard.errors import (
    AssetError,
    BusyError,
    GenerationError,
    InvalidRequestError,
    SceneNotFoundError,
)
from sceneboard.utils.image_process import Asset, encode_data_url, fetch_asset, is_data_url
from sceneboard.utils.logging_setup import log_context

from .backends import GenerationBackend
from .jobs import JobKind, JobTracker
from .models import GenerationParams, Scene, split_script, utc_now
from .store import SceneStore

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Asset]


def describe_error(exc: BaseException) -> str:
    details = getattr(exc, "details", None)
    if details:
        return f"{exc}: {details}"
    return str(exc)


class SceneOrchestrator:
    """
    Drives script generation and the per-scene regenerate/animate operations.

    Runs on a single event loop. The only mutual exclusion is the JobTracker,
    which stops a second operation of the same kind on the same scene; a
    regenerate and an animate on one scene may overlap.
    """

    def __init__(
        self,
        store: SceneStore,
        backend: GenerationBackend,
        jobs: Optional[JobTracker] = None,
        fetcher: Fetcher = fetch_asset,
        params: Optional[GenerationParams] = None,
        session_id: Optional[str] = None,
    ):
        self.store = store
        self.session_id = session_id
        self.events = store.events
        self.backend = backend
        self.jobs = jobs or JobTracker()
        self.fetcher = fetcher
        self.params = params or GenerationParams()
        self.generating = False
        # Reason of the latest failed operation per (kind, scene); cleared on the next attempt.
        self.last_errors: Dict[Tuple[JobKind, int], str] = {}
        self._tasks: Dict[Tuple[JobKind, int], asyncio.Task] = {}

    async def generate_all_scenes(self, script_text: str, params: Optional[GenerationParams] = None) -> List[Scene]:
        """
        Generate one scene per non-blank script line, one line at a time.

        All or nothing: if any line fails the store keeps its previous
        contents and GenerationError is raised.
        """
        lines = split_script(script_text)
        if not lines:
            raise InvalidRequestError("Please enter a script first.")
        if self.generating:
            raise BusyError("Scenes are already being generated")

        params = params or self.params
        self.generating = True
        self.events.notify("loading", "generate", f"Generating {len(lines)} scenes...")
        scenes: List[Scene] = []
        try:
            with log_context(session_id=self.session_id, operation="generate"):
                for index, line in enumerate(lines, start=1):
                    try:
                        image_url = await self.backend.generate_image(line, params)
                    except Exception as exc:
                        logger.error(f"Error generating scene {index}: {describe_error(exc)}")
                        message = f"Failed to generate scene {index}"
                        self.events.notify("error", "generate", f"{message}: {describe_error(exc)}", scene_id=index)
                        raise GenerationError(message, details=describe_error(exc)) from exc
                    scenes.append(Scene(id=index, text=line, image_url=image_url))
                    logger.info(f"Generated scene {index}/{len(lines)}")
        finally:
            self.generating = False

        self.store.replace_all(scenes)
        self.events.notify("success", "generate", "All scenes generated successfully!")
        return scenes

    async def regenerate_scene(self, scene_id: int, params: Optional[GenerationParams] = None) -> bool:
        """Returns False without doing anything if the scene is already regenerating."""
        self._require_scene(scene_id)
        if not self._acquire(JobKind.REGENERATE, scene_id):
            return False
        try:
            return await self._regenerate(scene_id, params)
        finally:
            self._release(JobKind.REGENERATE, scene_id)

    async def animate_scene(self, scene_id: int) -> bool:
        """Returns False without doing anything if the scene is already animating."""
        self._require_scene(scene_id)
        if not self._acquire(JobKind.ANIMATE, scene_id):
            return False
        try:
            return await self._animate(scene_id)
        finally:
            self._release(JobKind.ANIMATE, scene_id)

    def submit(self, kind: JobKind, scene_id: int, params: Optional[GenerationParams] = None) -> Optional[asyncio.Task]:
        """
        Start an operation as a cancellable task keyed by (kind, scene_id).

        The busy marker is taken before this returns, so a second submit for
        the same key returns None. It is released when the task finishes for
        any reason, cancellation included.
        """
        kind = JobKind(kind)
        loop = asyncio.get_running_loop()
        self._require_scene(scene_id)
        if not self._acquire(kind, scene_id):
            return None

        if kind is JobKind.REGENERATE:
            coro = self._regenerate(scene_id, params)
        else:
            coro = self._animate(scene_id)
        task = loop.create_task(coro, name=f"{kind.value}-scene-{scene_id}")
        key = (kind, scene_id)
        self._tasks[key] = task
        task.add_done_callback(lambda t: self._on_task_done(key, t))
        return task

    def cancel(self, kind: JobKind, scene_id: int) -> bool:
        task = self._tasks.get((JobKind(kind), scene_id))
        if task is None or task.done():
            return False
        return task.cancel()

    def cancel_all(self) -> int:
        cancelled = 0
        for task in list(self._tasks.values()):
            if not task.done() and task.cancel():
                cancelled += 1
        return cancelled

    def running_task(self, kind: JobKind, scene_id: int) -> Optional[asyncio.Task]:
        return self._tasks.get((JobKind(kind), scene_id))

    def _on_task_done(self, key: Tuple[JobKind, int], task: asyncio.Task) -> None:
        kind, scene_id = key
        if self._tasks.get(key) is task:
            del self._tasks[key]
        self._release(kind, scene_id)
        if task.cancelled():
            logger.info(f"{kind.value} of scene {scene_id} cancelled")
            self.events.notify("info", kind.value, f"Scene {scene_id} {kind.value} cancelled", scene_id=scene_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"{kind.value} of scene {scene_id} crashed: {exc!r}")

    def _require_scene(self, scene_id: int) -> Scene:
        scene = self.store.get(scene_id)
        if scene is None:
            raise SceneNotFoundError(f"Scene {scene_id} not found")
        return scene

    def _acquire(self, kind: JobKind, scene_id: int) -> bool:
        if not self.jobs.try_acquire(kind, scene_id):
            logger.info(f"Scene {scene_id} is already busy with {kind.value}")
            return False
        self.events.publish({"type": "job", "kind": kind.value, "scene_id": scene_id, "busy": True})
        return True

    def _release(self, kind: JobKind, scene_id: int) -> None:
        if self.jobs.is_busy(kind, scene_id):
            self.jobs.release(kind, scene_id)
            self.events.publish({"type": "job", "kind": kind.value, "scene_id": scene_id, "busy": False})

    def _fail(self, kind: JobKind, scene_id: int, message: str) -> bool:
        self.last_errors[(kind, scene_id)] = message
        self.events.notify("error", kind.value, message, scene_id=scene_id)
        return False

    async def _regenerate(self, scene_id: int, params: Optional[GenerationParams]) -> bool:
        with log_context(session_id=self.session_id, scene_id=scene_id, operation="regenerate"):
            self.last_errors.pop((JobKind.REGENERATE, scene_id), None)
            scene = self.store.get(scene_id)
            if scene is None:
                logger.warning(f"Scene {scene_id} disappeared before regeneration")
                return self._fail(JobKind.REGENERATE, scene_id, f"Scene {scene_id} not found")
            board = self.store.revision
            params = params or self.params
            self.events.notify("loading", "regenerate", f"Regenerating scene {scene_id}", scene_id=scene_id)
            try:
                image_url = await self.backend.generate_image(scene.text, params)
            except Exception as exc:
                logger.error(f"Error regenerating scene: {describe_error(exc)}")
                return self._fail(
                    JobKind.REGENERATE, scene_id, f"Failed to regenerate scene: {describe_error(exc)}"
                )

            if self.store.revision != board or scene_id not in self.store:
                logger.warning(f"Scene {scene_id} was replaced while regenerating; result dropped")
                return self._fail(JobKind.REGENERATE, scene_id, "Failed to regenerate scene: scene was replaced")
            # A video made from the old image no longer matches the scene.
            self.store.update(
                scene_id,
                image_url=image_url,
                video_url=None,
                last_animated=None,
                timestamp=utc_now(),
            )
            logger.info(f"Scene {scene_id} regenerated")
            self.events.notify("success", "regenerate", f"Scene {scene_id} regenerated!", scene_id=scene_id)
            return True

    async def _animate(self, scene_id: int) -> bool:
        with log_context(session_id=self.session_id, scene_id=scene_id, operation="animate"):
            self.last_errors.pop((JobKind.ANIMATE, scene_id), None)
            scene = self.store.get(scene_id)
            if scene is None:
                logger.warning(f"Scene {scene_id} disappeared before animation")
                return self._fail(JobKind.ANIMATE, scene_id, f"Scene {scene_id} not found")
            board = self.store.revision
            image_url = scene.image_url
            self.events.notify("loading", "animate", f"Animating scene {scene_id}", scene_id=scene_id)
            try:
                first_frame = await self._prepare_first_frame(image_url)
                video_url = await self.backend.animate(scene.text, first_frame)
            except Exception as exc:
                logger.error(f"Error animating scene: {describe_error(exc)}")
                return self._fail(JobKind.ANIMATE, scene_id, f"Animation failed: {describe_error(exc)}")

            current = self.store.get(scene_id)
            if self.store.revision != board or current is None or current.image_url != image_url:
                logger.warning(f"Image of scene {scene_id} changed while animating; video discarded")
                return self._fail(JobKind.ANIMATE, scene_id, "Animation failed: scene image changed while animating")
            self.store.update(scene_id, video_url=video_url, last_animated=utc_now())
            logger.info(f"Scene {scene_id} animated")
            self.events.notify("success", "animate", f"Scene {scene_id} animated!", scene_id=scene_id)
            return True

    async def _prepare_first_frame(self, image_url: str) -> str:
        """Validate the scene image and return it as a data URL."""
        try:
            asset = await asyncio.to_thread(self.fetcher, image_url)
        except AssetError:
            raise
        except Exception as exc:
            raise AssetError(f"Failed to process image: {exc}") from exc
        if not asset.is_image:
            raise InvalidRequestError("Invalid image for animation")
        if is_data_url(image_url):
            return image_url
        return encode_data_url(asset.content, asset.content_type)
