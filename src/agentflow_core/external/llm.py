"""Text-generation collaborator.

The workflow treats the model as a black box: messages in, text out. Calls
are never retried here; a failure surfaces as ExternalUnavailable and the
caller decides what to do.
"""
import logging
from typing import Optional, Protocol

import httpx

from ..config import Settings
from ..errors import ExternalUnavailable

logger = logging.getLogger("agentflow-core.llm")

COLLABORATOR = "text-generation"


class TextGenerator(Protocol):
    def generate(self, messages: list[dict], response_schema: Optional[dict] = None) -> str:
        """
        Generate a completion.

        Args:
            messages: Chat messages as {"role": ..., "content": ...} dicts
            response_schema: Optional JSON schema the response must follow.
                Expected shape: {"name": str, "schema": dict}

        Raises:
            ExternalUnavailable: If the call fails or times out
        """
        ...


class HttpTextGenerator:
    """OpenAI-compatible chat completions client."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        model: str,
        timeout: float = 120.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpTextGenerator":
        return cls(
            base_url=settings.llm_base_url,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            timeout=settings.llm_timeout_seconds,
        )

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def generate(self, messages: list[dict], response_schema: Optional[dict] = None) -> str:
        payload: dict = {"model": self.model, "messages": messages}
        if response_schema:
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": response_schema["name"],
                    "strict": True,
                    "schema": response_schema["schema"],
                },
            }

        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self._headers(),
                transport=self.transport,
            ) as client:
                response = client.post("/chat/completions", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Text generation failed with HTTP {e.response.status_code}: {e.response.text[:500]}")
            raise ExternalUnavailable(COLLABORATOR, f"HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"Text generation request error ({type(e).__name__}): {e}")
            raise ExternalUnavailable(COLLABORATOR, str(e) or type(e).__name__) from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ExternalUnavailable(COLLABORATOR, "malformed completion response") from e

        if not isinstance(content, str):
            raise ExternalUnavailable(COLLABORATOR, "completion content is not text")
        return content
