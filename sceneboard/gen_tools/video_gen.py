from sceneboard.config.config import config
from sceneboard.errors import GenerationError
from sceneboard.gen_tools.base import ToolResponse, get_replicate_api_token, replicate_settings, setup_logger
from sceneboard.utils.replicate_universal import UniversalRunner

video_gen_config = config.get("gen_tools", {}).setdefault("video_gen", {})

logger = setup_logger(__name__)

DEFAULT_MODEL = "minimax/video-01-live"


def image2video_generate(prompt: str, first_frame_image: str, prompt_optimizer: bool | None = True) -> ToolResponse:
    """
    Animates a scene starting from its still image.

    Args:
        prompt (str): The scene text.
        first_frame_image (str): Self-contained (data URL) image used as the first frame.
        prompt_optimizer (bool, optional): Let the model rewrite the prompt. Defaults to True.

    Returns:
        ToolResponse with `output_url` set to the hosted video.
    """
    api_token = get_replicate_api_token()
    settings = replicate_settings()
    runner = UniversalRunner(
        api_token=api_token,
        base_url=settings.get("base_url", "https://api.replicate.com/v1"),
        poll_interval_sec=settings.get("poll_interval_sec", 1),
    )

    model = video_gen_config.get("model", DEFAULT_MODEL)
    params = {
        "prompt": prompt,
        "first_frame_image": first_frame_image,
        "prompt_optimizer": True if prompt_optimizer is None else bool(prompt_optimizer),
    }

    logger.info(f"Animating scene with {model}: {prompt[:50]}...")
    data = runner.run(model, params, timeout_sec=settings.get("timeout_sec", 300))
    video_url = data.get("output_url")
    if not video_url:
        raise GenerationError("No output received from Replicate")
    logger.info(f"Video URL: {video_url}")

    return ToolResponse(
        success=True,
        message="Scene animated successfully.",
        output_url=video_url,
    )
