"""
Scene board core.

- SceneStore holds the scenes of a session and publishes every change
- JobTracker keeps per-operation busy sets of scene ids
- SceneOrchestrator runs script generation and per-scene regenerate/animate
- ExportPipeline builds single-scene downloads and the zip export
"""

from .export import ExportPipeline, ExportedFile
from .jobs import JobKind, JobTracker
from .models import GenerationParams, Phase, Scene, split_script
from .service import SceneOrchestrator
from .session import StoryboardSession
from .store import SceneStore

__all__ = [
    "ExportPipeline",
    "ExportedFile",
    "GenerationParams",
    "JobKind",
    "JobTracker",
    "Phase",
    "Scene",
    "SceneOrchestrator",
    "SceneStore",
    "StoryboardSession",
    "split_script",
]
