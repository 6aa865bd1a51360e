from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .events import EventBus
from .models import Scene


class SceneStore:
    """
    Ordered in-memory collection of scenes for one session.

    Scenes are immutable records; `update` swaps in a modified copy under the
    same id, so a list returned earlier is never changed behind a caller.
    `revision` goes up whenever the whole board is replaced or cleared; scene
    ids restart at 1 with each new board, so an id alone does not identify a
    scene across boards.
    """

    def __init__(self, events: Optional[EventBus] = None):
        self.events = events or EventBus()
        self.revision = 0
        self._scenes: Dict[int, Scene] = {}

    def __len__(self) -> int:
        return len(self._scenes)

    def __contains__(self, scene_id: int) -> bool:
        return scene_id in self._scenes

    def list(self) -> List[Scene]:
        return list(self._scenes.values())

    def get(self, scene_id: int) -> Optional[Scene]:
        return self._scenes.get(scene_id)

    def replace_all(self, scenes: Iterable[Scene]) -> None:
        scenes = list(scenes)
        ids = [s.id for s in scenes]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate scene ids: {ids}")
        self._scenes = {s.id: s for s in scenes}
        self.revision += 1
        self.events.publish({"type": "scenes_replaced", "scenes": [s.to_dict() for s in scenes]})

    def update(self, scene_id: int, **changes) -> Optional[Scene]:
        current = self._scenes.get(scene_id)
        if current is None:
            return None
        if "id" in changes or "text" in changes:
            raise ValueError("Scene id and text cannot be changed")
        updated = replace(current, **changes)
        self._scenes[scene_id] = updated
        self.events.publish({"type": "scene_updated", "scene": updated.to_dict()})
        return updated

    def clear(self) -> None:
        self._scenes = {}
        self.revision += 1
        self.events.publish({"type": "scenes_cleared"})
