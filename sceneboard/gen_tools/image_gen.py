from sceneboard.config.config import config
from sceneboard.errors import GenerationError
from sceneboard.gen_tools.base import ToolResponse, get_replicate_api_token, replicate_settings, setup_logger
from sceneboard.utils.image_process import download_asset, encode_data_url
from sceneboard.utils.replicate_universal import UniversalRunner

image_gen_config = config.get("gen_tools", {}).setdefault("image_gen", {})

logger = setup_logger(__name__)

DEFAULT_MODEL = "black-forest-labs/flux-schnell"
DEFAULT_QUALITY = {"high": 100, "standard": 80}


def build_image_prompt(prompt: str, style: str | None = None) -> str:
    prompt = prompt.strip()
    if style:
        return f"{prompt}, {style} style"
    return prompt


def text2image_generate(
    prompt: str,
    style: str | None = None,
    aspect_ratio: str | None = None,
    quality: str | None = None,
) -> ToolResponse:
    """
    Generates a still image for one scene of a script.

    The hosted model answers with a remote URL; the image is downloaded and
    returned inline-encoded so callers never depend on the remote copy.

    Args:
        prompt (str): The scene text.
        style (str, optional): Visual style hint appended to the prompt.
        aspect_ratio (str, optional): e.g. "16:9", "1:1", "9:16".
        quality (str, optional): "high" or "standard".

    Returns:
        ToolResponse with `output_url` set to a data URL and `original_url`
        set to the hosted file.

    Raises:
        ConfigurationError: REPLICATE_API_TOKEN is not set.
        GenerationError: the model returned no image or it could not be downloaded.
    """
    api_token = get_replicate_api_token()
    settings = replicate_settings()
    runner = UniversalRunner(
        api_token=api_token,
        base_url=settings.get("base_url", "https://api.replicate.com/v1"),
        poll_interval_sec=settings.get("poll_interval_sec", 1),
    )

    output_format = image_gen_config.get("output_format", "webp")
    quality_map = image_gen_config.get("quality") or DEFAULT_QUALITY
    params = {
        "prompt": build_image_prompt(prompt, style),
        "num_outputs": 1,
        "aspect_ratio": aspect_ratio or image_gen_config.get("default_aspect_ratio", "16:9"),
        "output_format": output_format,
        "output_quality": quality_map.get(quality or "high", 100),
        "go_fast": image_gen_config.get("go_fast", True),
    }
    model = image_gen_config.get("model", DEFAULT_MODEL)

    logger.info(f"Generating image with {model}: {prompt[:50]}...")
    data = runner.run(model, params, timeout_sec=settings.get("timeout_sec", 300))
    image_url = data.get("output_url")
    if not image_url:
        raise GenerationError("No output received from Replicate")
    logger.info(f"Image URL: {image_url}")

    try:
        asset = download_asset(image_url)
    except Exception as exc:
        raise GenerationError("Failed to fetch generated image", details=str(exc)) from exc

    content_type = asset.content_type if asset.is_image else f"image/{output_format}"
    return ToolResponse(
        success=True,
        message="Image generated successfully.",
        output_url=encode_data_url(asset.content, content_type),
        original_url=image_url,
    )
