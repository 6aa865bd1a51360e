from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from sceneboard.errors import BusyError
from sceneboard.utils.image_process import fetch_asset

from .backends import GenerationBackend, HttpGenerationBackend, LocalGenerationBackend
from .events import EventBus
from .export import ExportPipeline
from .jobs import JobTracker
from .models import GenerationParams, Phase, Scene
from .service import SceneOrchestrator
from .store import SceneStore

logger = logging.getLogger(__name__)


class StoryboardSession:
    """One user's board: script, scenes, busy markers, selected parameters and phase."""

    def __init__(self, backend: GenerationBackend, fetcher=fetch_asset, session_id: Optional[str] = None):
        self.session_id = session_id or str(uuid.uuid4())
        self.events = EventBus()
        self.store = SceneStore(self.events)
        self.jobs = JobTracker()
        self.orchestrator = SceneOrchestrator(
            self.store, backend, jobs=self.jobs, fetcher=fetcher, session_id=self.session_id
        )
        self.exporter = ExportPipeline(fetcher=fetcher, events=self.events)
        self.phase = Phase.SCRIPT
        self.script = ""

    @property
    def params(self) -> GenerationParams:
        return self.orchestrator.params

    def set_params(self, style: Optional[str] = None, aspect_ratio: Optional[str] = None, quality: Optional[str] = None) -> GenerationParams:
        self.orchestrator.params = GenerationParams.from_request(style, aspect_ratio, quality, base=self.params)
        self.events.publish({"type": "params", "params": self.params.to_dict()})
        return self.params

    async def generate(self, script_text: str) -> List[Scene]:
        scenes = await self.orchestrator.generate_all_scenes(script_text)
        self.script = script_text
        self.set_phase(Phase.REVIEW)
        return scenes

    def set_phase(self, phase: Phase) -> None:
        self.phase = Phase(phase)
        self.events.publish({"type": "phase", "phase": self.phase.value})

    def new_project(self) -> bool:
        """
        Start over. Does nothing on an empty board.

        Raises BusyError while a script is being generated; the batch would
        otherwise refill the cleared board when it finishes.
        """
        if self.orchestrator.generating:
            raise BusyError("Scenes are still being generated")
        if len(self.store) == 0:
            return False
        cancelled = self.orchestrator.cancel_all()
        if cancelled:
            logger.info(f"Cancelled {cancelled} running scene operations")
        self.store.clear()
        self.script = ""
        self.set_phase(Phase.SCRIPT)
        self.events.notify("success", "new_project", "Started new project")
        return True

    def snapshot(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "phase": self.phase.value,
            "script": self.script,
            "generating": self.orchestrator.generating,
            "params": self.params.to_dict(),
            "scenes": [scene.to_dict() for scene in self.store.list()],
            "busy": self.jobs.snapshot(),
        }


def build_backend(config: Dict[str, Any]) -> GenerationBackend:
    backend_url = config.get("generation_backend_url")
    if backend_url:
        logger.info(f"Using remote generation backend at {backend_url}")
        return HttpGenerationBackend(backend_url, timeout_sec=config.get("request_timeout_sec", 120))
    return LocalGenerationBackend()
