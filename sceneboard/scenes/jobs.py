from enum import Enum
from typing import Dict, FrozenSet, Set


class JobKind(str, Enum):
    REGENERATE = "regenerate"
    ANIMATE = "animate"


class JobTracker:
    """Per-kind busy sets of scene ids. No expiry: a marker stays until released."""

    def __init__(self):
        self._busy: Dict[JobKind, Set[int]] = {kind: set() for kind in JobKind}

    def try_acquire(self, kind: JobKind, scene_id: int) -> bool:
        busy = self._busy[JobKind(kind)]
        if scene_id in busy:
            return False
        busy.add(scene_id)
        return True

    def release(self, kind: JobKind, scene_id: int) -> None:
        self._busy[JobKind(kind)].discard(scene_id)

    def is_busy(self, kind: JobKind, scene_id: int) -> bool:
        return scene_id in self._busy[JobKind(kind)]

    def is_scene_busy(self, scene_id: int) -> bool:
        return any(scene_id in busy for busy in self._busy.values())

    def busy_ids(self, kind: JobKind) -> FrozenSet[int]:
        return frozenset(self._busy[JobKind(kind)])

    def snapshot(self) -> Dict[str, list]:
        return {kind.value: sorted(ids) for kind, ids in self._busy.items()}
