import base64
import logging
from pathlib import Path
from typing import List

import requests

from xat_api.settings import Config

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class OllamaRequestError(Exception):
    pass


def ollama_generate(
    config: Config, model: str, prompt: str, images: List[str] | None = None
) -> str:
    """Single blocking call to the generate endpoint, returns the raw response text."""
    url = f"{config.ollama_url.rstrip('/')}/generate"
    payload = {"model": model, "prompt": prompt, "stream": False}
    if images:
        payload["images"] = images

    logger.info(f"POST {url} (model={model}, prompt={len(prompt)} chars)")
    try:
        resp = requests.post(url, json=payload, timeout=config.upstream_timeout)
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        raise OllamaRequestError(f"Request to {url} failed: {e}") from e

    if not isinstance(data, dict) or not data.get("response"):
        raise OllamaRequestError("Ollama response does not have the expected format")
    return data["response"]


def image_to_base64(image_path: Path) -> str | None:
    try:
        return base64.b64encode(image_path.read_bytes()).decode("ascii")
    except OSError as e:
        logger.error(f"Could not read image {image_path}: {e}")
        return None
