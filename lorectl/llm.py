"""
LLM transport for OpenAI-compatible chat completion APIs.

Works with OpenAI, OpenRouter and local servers (Ollama, LM Studio,
llama.cpp) exposing POST {base_url}/chat/completions with bearer auth.

Non-streaming:  choices[0].message.content
Streaming:      "data: <json>" lines carrying choices[0].delta.content,
                terminated by "data: [DONE]"
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator, List, Optional

import requests

from lorectl.config import LLMProviderConfig

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data: "
SSE_DONE = "[DONE]"


class LLMError(RuntimeError):
    """Non-2xx response (or unusable body) from the chat completion API."""

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"LLM API error: {status} - {body}")


class LLMClient:
    """Chat completion client bound to one provider configuration."""

    def __init__(
        self,
        config: LLMProviderConfig,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self._session = session or requests.Session()

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _payload(
        self,
        messages: List[Dict[str, str]],
        stream: bool,
        temperature: Optional[float],
        top_p: Optional[float],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.config.model_name,
            "messages": messages,
            "stream": stream,
        }
        # Length is steered by the prompt, so max_tokens is never sent
        if temperature is not None:
            payload["temperature"] = temperature
        if top_p is not None:
            payload["top_p"] = top_p
        return payload

    @staticmethod
    def _check(resp: requests.Response) -> None:
        if not resp.ok:
            raise LLMError(resp.status_code, resp.text)

    def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ) -> str:
        """Send a non-streaming request and return the message content.

        Raises:
            LLMError: On a non-2xx status or a body that is not a
                well-formed completion (no choices, non-object message,
                non-text content).
            requests.RequestException: On transport failure.
        """
        resp = self._session.post(
            self.endpoint,
            json=self._payload(messages, False, temperature, top_p),
            headers=self._headers(),
            timeout=self.config.timeout,
        )
        self._check(resp)
        try:
            data = resp.json()
        except ValueError:
            raise LLMError(resp.status_code, f"invalid JSON body: {resp.text[:200]}")
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise LLMError(resp.status_code, "response has no choices")
        choice = choices[0]
        message = choice.get("message") if isinstance(choice, dict) else None
        if not isinstance(message, dict):
            raise LLMError(resp.status_code, f"malformed choice: {choice!r}"[:200])
        content = message.get("content")
        if content is None:
            return ""
        if not isinstance(content, str):
            raise LLMError(resp.status_code, f"non-text message content: {content!r}"[:200])
        return content

    def stream(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ) -> Iterator[str]:
        """Yield content deltas as they arrive.

        The HTTP response is released when the stream ends, when the
        generator is closed early, or on error.
        """
        with self._session.post(
            self.endpoint,
            json=self._payload(messages, True, temperature, top_p),
            headers=self._headers(),
            timeout=self.config.timeout,
            stream=True,
        ) as resp:
            self._check(resp)
            resp.encoding = "utf-8"
            for line in resp.iter_lines(decode_unicode=True):
                if not line or not line.startswith(SSE_DATA_PREFIX):
                    continue
                data = line[len(SSE_DATA_PREFIX):].strip()
                if data == SSE_DONE:
                    return
                try:
                    chunk = json.loads(data)
                except json.JSONDecodeError:
                    logger.debug("Skipping malformed stream line: %r", data[:80])
                    continue
                content = _delta_content(chunk)
                if content:
                    yield content


def _delta_content(chunk: Any) -> str:
    """choices[0].delta.content of a stream chunk, or ""."""
    if not isinstance(chunk, dict):
        return ""
    choices = chunk.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""
