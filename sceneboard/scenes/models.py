from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sceneboard.errors import InvalidRequestError


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Style(str, Enum):
    CINEMATIC = "cinematic"
    ARTISTIC = "artistic"
    REALISTIC = "realistic"


class AspectRatio(str, Enum):
    LANDSCAPE = "16:9"
    SQUARE = "1:1"
    PORTRAIT = "9:16"


class Quality(str, Enum):
    HIGH = "high"
    STANDARD = "standard"


class Phase(str, Enum):
    SCRIPT = "script"
    REVIEW = "review"


def _parse(enum_cls, value, name):
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise InvalidRequestError(f"Invalid {name} '{value}', expected one of: {allowed}") from None


@dataclass(frozen=True)
class GenerationParams:
    style: Style = Style.CINEMATIC
    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE
    quality: Quality = Quality.HIGH

    @classmethod
    def from_request(
        cls,
        style: Optional[str] = None,
        aspect_ratio: Optional[str] = None,
        quality: Optional[str] = None,
        base: Optional["GenerationParams"] = None,
    ) -> "GenerationParams":
        """Unset fields fall back to `base` (or the defaults)."""
        base = base or cls()
        return cls(
            style=_parse(Style, style, "style") or base.style,
            aspect_ratio=_parse(AspectRatio, aspect_ratio, "aspect ratio") or base.aspect_ratio,
            quality=_parse(Quality, quality, "quality") or base.quality,
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "style": self.style.value,
            "aspectRatio": self.aspect_ratio.value,
            "quality": self.quality.value,
        }


@dataclass(frozen=True)
class Scene:
    id: int
    text: str
    image_url: str
    video_url: Optional[str] = None
    timestamp: str = field(default_factory=utc_now)
    last_animated: Optional[str] = None

    @property
    def has_video(self) -> bool:
        return bool(self.video_url)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "imageUrl": self.image_url,
            "videoUrl": self.video_url,
            "timestamp": self.timestamp,
            "lastAnimated": self.last_animated,
        }


def split_script(script_text: str) -> List[str]:
    """Non-blank lines, split on "\\n" only so form feeds and Unicode separators stay inside a line."""
    return [line.strip() for line in (script_text or "").split("\n") if line.strip()]
