import asyncio
import logging
from typing import Protocol

import requests

from sceneboard.errors import GenerationError

from .models import GenerationParams

logger = logging.getLogger(__name__)


class GenerationBackend(Protocol):
    async def generate_image(self, prompt: str, params: GenerationParams) -> str:
        ...

    async def animate(self, prompt: str, image: str) -> str:
        ...


class LocalGenerationBackend:
    """Runs the generation tools in a worker thread of this process."""

    async def generate_image(self, prompt: str, params: GenerationParams) -> str:
        from sceneboard.gen_tools.image_gen import text2image_generate

        resp = await asyncio.to_thread(
            text2image_generate,
            prompt,
            style=params.style.value,
            aspect_ratio=params.aspect_ratio.value,
            quality=params.quality.value,
        )
        if not resp.output_url:
            raise GenerationError("No image returned from generation service")
        return resp.output_url

    async def animate(self, prompt: str, image: str) -> str:
        from sceneboard.gen_tools.video_gen import image2video_generate

        resp = await asyncio.to_thread(image2video_generate, prompt, image, True)
        if not resp.output_url:
            raise GenerationError("No video URL returned from animation service")
        return resp.output_url


class HttpGenerationBackend:
    """Talks to the /generate-image and /animate-scene routes of a sceneboard server."""

    def __init__(self, base_url: str, timeout_sec: int = 120):
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = timeout_sec

    def _post(self, path: str, payload: dict) -> dict:
        url = f"{self.base_url}{path}"
        try:
            resp = requests.post(url, json=payload, timeout=self.timeout_sec)
        except requests.RequestException as exc:
            raise GenerationError(f"Request to {path} failed", details=str(exc)) from exc
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code != 200:
            message = data.get("error") or f"{path} returned {resp.status_code}"
            raise GenerationError(message, details=data.get("details") or resp.reason)
        return data

    async def generate_image(self, prompt: str, params: GenerationParams) -> str:
        payload = {"prompt": prompt, **params.to_dict()}
        data = await asyncio.to_thread(self._post, "/generate-image", payload)
        image_url = data.get("imageUrl")
        if not image_url:
            raise GenerationError("No image returned from generation service")
        return image_url

    async def animate(self, prompt: str, image: str) -> str:
        payload = {"prompt": prompt, "first_frame_image": image, "prompt_optimizer": True}
        data = await asyncio.to_thread(self._post, "/animate-scene", payload)
        video_url = data.get("videoUrl")
        if not video_url:
            raise GenerationError("No video URL returned from animation service")
        return video_url
