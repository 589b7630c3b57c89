"""
Remote text-generation client.

The AI-assisted features (column mapping, search, rule generation) each have
a remote strategy built on TextGenerator and a heuristic strategy that needs
nothing external. get_text_generator() returns None when no remote service
is configured, and callers then go straight to the heuristics.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from app.config.settings import Settings, get_settings
from app.exceptions.custom_errors import TextGenerationError

logger = logging.getLogger(__name__)


class TextGenerator(ABC):
    @abstractmethod
    def generate(self, prompt: str) -> str:
        """Return generated text for the prompt or raise TextGenerationError."""
        pass

    def generate_json(self, prompt: str) -> Any:
        return extract_json(self.generate(prompt))

    def close(self) -> None:
        pass


class RemoteTextGenerator(TextGenerator):
    """Hugging Face style inference endpoint: {"inputs": ...} -> [{"generated_text": ...}]."""

    def __init__(self, url: str, api_key: str, timeout: float = 30.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.api_key = api_key
        self._client = client or httpx.Client(timeout=timeout)

    def generate(self, prompt: str) -> str:
        payload = {
            "inputs": prompt,
            "parameters": {"max_new_tokens": 1024, "temperature": 0.1, "return_full_text": False},
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            response = self._client.post(self.url, headers=headers, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise TextGenerationError(f"Text generation returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise TextGenerationError(f"Text generation request failed: {e}") from e
        except ValueError as e:
            raise TextGenerationError("Text generation returned a non-JSON body") from e

        if isinstance(data, list) and data and isinstance(data[0], dict):
            text = data[0].get("generated_text", "")
        elif isinstance(data, dict):
            text = data.get("generated_text", "")
        elif isinstance(data, str):
            text = data
        else:
            text = ""
        if not text:
            raise TextGenerationError("Text generation returned no text")
        return text

    def close(self) -> None:
        self._client.close()


def extract_json(text: str) -> Any:
    """Parse the outermost JSON object embedded in generated text."""
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise TextGenerationError("No JSON object in generated text")
    try:
        return json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        raise TextGenerationError(f"Generated JSON is invalid: {e}") from e


def get_text_generator(settings: Optional[Settings] = None) -> Optional[TextGenerator]:
    settings = settings or get_settings()
    if not settings.huggingface_api_key:
        logger.debug("No text generation API key configured; heuristic strategies only")
        return None
    return RemoteTextGenerator(
        settings.text_generation_url,
        settings.huggingface_api_key,
        timeout=settings.text_generation_timeout_seconds,
    )
