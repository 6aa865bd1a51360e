import asyncio
import io
import json
import logging
import zipfile
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sceneboard.errors import AssetError, ExportError
from sceneboard.utils.image_process import Asset, fetch_asset

from .events import EventBus
from .models import Scene, utc_now

logger = logging.getLogger(__name__)

ARCHIVE_NAME = "scenes.zip"
METADATA_NAME = "metadata.json"


@dataclass
class ExportedFile:
    filename: str
    content: bytes
    media_type: str


def scene_filename(scene: Scene) -> str:
    return f"scene-{scene.id}.mp4" if scene.has_video else f"scene-{scene.id}.webp"


def build_metadata(scenes: List[Scene], export_date: Optional[str] = None) -> Dict[str, Any]:
    return {
        "exportDate": export_date or utc_now(),
        "totalScenes": len(scenes),
        "scenes": [
            {
                "id": scene.id,
                "text": scene.text,
                "hasVideo": scene.has_video,
                "timestamp": scene.timestamp,
            }
            for scene in scenes
        ],
    }


def write_archive(metadata: Dict[str, Any], entries: List[Tuple[str, bytes]]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(METADATA_NAME, json.dumps(metadata, indent=2, ensure_ascii=False))
        for name, content in entries:
            zf.writestr(name, content)
    return buf.getvalue()


class ExportPipeline:
    """
    Per-scene download and whole-board zip export.

    The zip is best effort: a scene whose asset cannot be fetched is logged
    and left out, the rest are still exported.
    """

    def __init__(self, fetcher: Callable[[str], Asset] = fetch_asset, events: Optional[EventBus] = None):
        self.fetcher = fetcher
        self.events = events or EventBus()

    async def _fetch(self, scene: Scene) -> Asset:
        try:
            return await asyncio.to_thread(self.fetcher, scene.video_url or scene.image_url)
        except AssetError:
            raise
        except Exception as exc:
            raise AssetError(f"Failed to fetch scene {scene.id}: {exc}") from exc

    async def export_scene(self, scene: Scene) -> ExportedFile:
        self.events.notify("loading", "download", "Preparing download...", scene_id=scene.id)
        try:
            asset = await self._fetch(scene)
        except AssetError as exc:
            logger.error(f"Error downloading scene {scene.id}: {exc}")
            self.events.notify("error", "download", "Failed to download scene", scene_id=scene.id)
            raise
        default_type = "video/mp4" if scene.has_video else "image/webp"
        media_type = asset.content_type if asset.content_type != "application/octet-stream" else default_type
        self.events.notify("success", "download", f"Scene {scene.id} downloaded successfully", scene_id=scene.id)
        return ExportedFile(filename=scene_filename(scene), content=asset.content, media_type=media_type)

    async def export_all(self, scenes: Iterable[Scene]) -> ExportedFile:
        scenes = list(scenes)
        self.events.notify("loading", "export", "Preparing export...")
        metadata = build_metadata(scenes)

        entries: List[Tuple[str, bytes]] = []
        for scene in scenes:
            try:
                asset = await self._fetch(scene)
            except AssetError as exc:
                logger.error(f"Error adding scene {scene.id} to zip: {exc}")
                continue
            entries.append((scene_filename(scene), asset.content))

        try:
            content = await asyncio.to_thread(write_archive, metadata, entries)
        except Exception as exc:
            logger.error(f"Error exporting scenes: {exc}")
            self.events.notify("error", "export", "Failed to export scenes")
            raise ExportError(f"Failed to export scenes: {exc}") from exc

        skipped = len(scenes) - len(entries)
        if skipped:
            logger.warning(f"Exported {len(entries)} of {len(scenes)} scenes, {skipped} skipped")
        self.events.notify("success", "export", "All scenes exported successfully", skipped=skipped)
        return ExportedFile(filename=ARCHIVE_NAME, content=content, media_type="application/zip")
