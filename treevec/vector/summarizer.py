"""
LLM-backed summarization of file contents before embedding.
"""

from abc import ABC, abstractmethod
import asyncio
from typing import Optional

import ollama
import requests

from ..util.logging import logger

DEFAULT_SUMMARIZE_PROMPT = (
    "Summarize the following code or text. Describe the main functions, classes, "
    "methods and their purpose. Keep the important details but make the text "
    "more compact and structured."
)
DEFAULT_MAX_TEXT_LENGTH = 8000
DEFAULT_TRUNCATE_MESSAGE = "\n\n[... text truncated ...]"


class ITextGenerator(ABC):
    """Abstract interface for text completion backends."""

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """Return the model's completion for `prompt`."""
        pass


class OllamaTextGenerator(ITextGenerator):
    """Completions from a local Ollama server."""

    def __init__(self, model_name: str, host: str = "http://localhost:11434", timeout: float = 60, client=None):
        self.model_name = model_name
        self.host = host
        self.timeout = timeout
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = ollama.Client(host=self.host, timeout=self.timeout)
        return self._client

    def _generate(self, prompt: str) -> str:
        response = self.client.generate(model=self.model_name, prompt=prompt)
        return response.get("response", "") if response else ""

    async def generate(self, prompt: str) -> str:
        return await asyncio.to_thread(self._generate, prompt)


class OpenAICompatibleTextGenerator(ITextGenerator):
    """Completions from an OpenAI-compatible chat endpoint."""

    def __init__(self, model_name: str, base_url: str = "http://localhost:1234",
                 api_key: Optional[str] = None, timeout: float = 60, session=None):
        self.model_name = model_name
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _generate(self, prompt: str) -> str:
        headers = {"Content-Type": "application/json"}
        if self.api_key and self.api_key.strip():
            headers["Authorization"] = f"Bearer {self.api_key.strip()}"

        response = self.session.post(
            f"{self.base_url}/v1/chat/completions",
            json={
                "model": self.model_name,
                "messages": [{"role": "user", "content": prompt}],
                "stream": False,
            },
            headers=headers,
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        return data["choices"][0]["message"]["content"]

    async def generate(self, prompt: str) -> str:
        return await asyncio.to_thread(self._generate, prompt)


class TextSummarizer:
    """
    Summarizes text through a text generator.

    Input longer than max_text_length is cut and marked before it reaches the
    model. Summarization never fails: on any generator error the (possibly
    truncated) input is returned instead.
    """

    def __init__(self, generator: ITextGenerator, max_text_length: int = DEFAULT_MAX_TEXT_LENGTH,
                 truncate_message: str = DEFAULT_TRUNCATE_MESSAGE,
                 default_prompt: str = DEFAULT_SUMMARIZE_PROMPT):
        self.generator = generator
        self.max_text_length = max_text_length
        self.truncate_message = truncate_message
        self.default_prompt = default_prompt

    def truncate(self, text: str) -> str:
        if len(text) > self.max_text_length:
            return text[:self.max_text_length] + self.truncate_message
        return text

    async def summarize(self, text: str, prompt: Optional[str] = None) -> str:
        text_to_summarize = self.truncate(text)
        full_prompt = f"{prompt or self.default_prompt}\n\n{text_to_summarize}"

        try:
            summary = await self.generator.generate(full_prompt)
        except Exception as e:
            logger.warning(f"Summarization failed, using the original text instead: {e}")
            return text_to_summarize

        summary = (summary or "").strip()
        if not summary:
            logger.warning("Summarization returned no text, using the original text instead")
            return text_to_summarize
        return summary
