import json
import logging
from typing import Any, AsyncIterator

import httpx

from xat_api.errors import UpstreamFormatError, UpstreamUnavailable
from xat_api.settings import Config

logger = logging.getLogger(__name__)

MODEL_FIELDS = ("name", "modified_at", "size", "digest")


class InferenceClient:
    """Async client for an Ollama-compatible inference server.

    ``generate`` performs one bounded round trip and returns the full text.
    ``generate_stream`` yields the fragments of an incremental answer in the
    order the server sends them and stops at the ``done`` marker.
    """

    def __init__(
        self, config: Config, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self.base_url = config.ollama_url.rstrip("/")
        self.default_model = config.ollama_model
        self.timeout = config.upstream_timeout
        self.transport = transport

    def _client(self, timeout: httpx.Timeout | float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self.transport)

    async def generate(self, prompt: str, model: str | None = None) -> str:
        model = model or self.default_model
        url = f"{self.base_url}/generate"
        logger.debug(f"Generating response with {model} ({len(prompt)} chars)")

        try:
            async with self._client(self.timeout) as client:
                response = await client.post(
                    url, json={"model": model, "prompt": prompt, "stream": False}
                )
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Inference server unreachable: {e}") from e

        if not response.is_success:
            raise UpstreamUnavailable(
                f"Inference server answered {response.status_code}: {response.text}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamFormatError("Inference response is not JSON") from e

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise UpstreamFormatError("Inference response has no 'response' field")
        return text.strip()

    async def generate_stream(
        self, prompt: str, model: str | None = None
    ) -> AsyncIterator[str]:
        model = model or self.default_model
        url = f"{self.base_url}/generate"
        # only the connection attempt is bounded, the body may take as long as it needs
        timeout = httpx.Timeout(None, connect=self.timeout)
        logger.debug(f"Opening stream with {model} ({len(prompt)} chars)")

        try:
            async with self._client(timeout) as client:
                async with client.stream(
                    "POST",
                    url,
                    json={"model": model, "prompt": prompt, "stream": True},
                ) as response:
                    if not response.is_success:
                        await response.aread()
                        raise UpstreamUnavailable(
                            f"Inference server answered {response.status_code}: "
                            f"{response.text}"
                        )

                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        chunk = parse_stream_line(line)
                        done = bool(chunk.get("done"))
                        fragment = chunk.get("response")
                        if fragment is None and done:
                            return
                        if not isinstance(fragment, str):
                            raise UpstreamFormatError(
                                f"Stream chunk has no text 'response': {line[:200]}"
                            )
                        if fragment:
                            yield fragment
                        if done:
                            return
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Inference stream failed: {e}") from e

        raise UpstreamFormatError("Inference stream ended without a done marker")

    async def list_models(self) -> list[dict[str, Any]]:
        url = f"{self.base_url}/tags"
        try:
            async with self._client(self.timeout) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Inference server unreachable: {e}") from e

        if not response.is_success:
            raise UpstreamUnavailable(
                f"Model listing answered {response.status_code}",
                status_code=response.status_code,
            )

        try:
            models = response.json()["models"]
        except (ValueError, KeyError, TypeError) as e:
            raise UpstreamFormatError("Model listing has no 'models' field") from e

        if not isinstance(models, list) or not all(isinstance(m, dict) for m in models):
            raise UpstreamFormatError("Model listing 'models' is not a list of objects")
        return [{field: m.get(field) for field in MODEL_FIELDS} for m in models]


def parse_stream_line(line: str) -> dict[str, Any]:
    try:
        chunk = json.loads(line)
    except ValueError as e:
        raise UpstreamFormatError(f"Unparseable stream chunk: {line[:200]}") from e
    if not isinstance(chunk, dict):
        raise UpstreamFormatError(f"Unexpected stream chunk: {line[:200]}")
    if "error" in chunk:
        raise UpstreamUnavailable(f"Inference server error: {chunk['error']}")
    return chunk
