# /backend/wardround/services/completion_provider.py

"""
Completion provider: Gemini's REST generateContent endpoint over httpx.

complete() never raises. Transport failures, timeouts, non-2xx answers and
a missing API key all come back as an empty ``text`` with ``error`` set, so
every AI feature degrades to "nothing extracted".
"""

import re
import asyncio
import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel, Field

from wardround.config import settings

logger = logging.getLogger(__name__)

_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)


class ImagePayload(BaseModel):
    mime_type: str = "image/jpeg"
    data: str

    @classmethod
    def from_data_url(cls, value: str, default_mime: str = "image/jpeg") -> "ImagePayload":
        """Accept "data:image/png;base64,...." or bare base64."""
        match = _DATA_URL.match(value.strip())
        if match:
            return cls(mime_type=match.group("mime"), data=match.group("data"))
        return cls(mime_type=default_mime, data=value.strip())


class CompletionRequest(BaseModel):
    prompt: str
    images: List[ImagePayload] = Field(default_factory=list)
    structured_output: bool = False
    model: Optional[str] = None


class CompletionResponse(BaseModel):
    text: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.error


class CompletionProvider:

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.base_url = (base_url or settings.GEMINI_BASE_URL).rstrip("/")
        self.transport = transport

    # ------------------------------------------------------------------
    # Request body
    # ------------------------------------------------------------------

    def _model_for(self, request: CompletionRequest) -> str:
        if request.model:
            return request.model
        return settings.GEMINI_VISION_MODEL if request.images else settings.GEMINI_MODEL

    def _build_body(self, request: CompletionRequest) -> dict:
        parts = [
            {"inline_data": {"mime_type": image.mime_type, "data": image.data}}
            for image in request.images
        ]
        parts.append({"text": request.prompt})

        body = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {"temperature": 0.1},
        }
        if request.structured_output:
            body["generationConfig"]["responseMimeType"] = "application/json"
        return body

    @staticmethod
    def _response_text(payload) -> str:
        if not isinstance(payload, dict):
            raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
        candidates = payload.get("candidates") or []
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            return ""
        content = candidates[0].get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            return ""
        return "".join(
            part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)
        )

    # ------------------------------------------------------------------
    # Call
    # ------------------------------------------------------------------

    async def _post(self, url: str, body: dict, timeout: float) -> str:
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            response = await client.post(url, params={"key": self.api_key}, json=body)
            response.raise_for_status()
            return self._response_text(response.json())

    async def complete(self, request: CompletionRequest, timeout: Optional[float] = None) -> CompletionResponse:
        """
        One completion, bounded by ``timeout`` seconds in total.

        The deadline covers every attempt and the backoff between them; no
        retry starts once it has passed.
        """
        if not self.api_key:
            return CompletionResponse(error="Completion provider is not configured")

        model = self._model_for(request)
        url = f"{self.base_url}/models/{model}:generateContent"
        body = self._build_body(request)
        timeout = timeout if timeout is not None else settings.LLM_TIMEOUT_SECONDS
        retries = max(settings.LLM_MAX_RETRIES, 0)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        error = "Completion provider timed out"

        for attempt in range(retries + 1):
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                logger.info(f"Gemini {model} attempt {attempt + 1}/{retries + 1}")
                raw = await asyncio.wait_for(self._post(url, body, remaining), remaining)
                logger.info(f"Gemini raw ({len(raw)} chars): {raw[:300]}")
                return CompletionResponse(text=raw)

            except (asyncio.TimeoutError, httpx.TimeoutException):
                logger.warning(f"Timeout on attempt {attempt + 1}")
                error = "Completion provider timed out"
            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                logger.error(f"Gemini HTTP {status_code}: {e.response.text[:300]}")
                error = f"Completion provider returned HTTP {status_code}"
                if status_code < 500:
                    return CompletionResponse(error=error)
            except httpx.HTTPError as e:
                logger.error(f"Gemini transport error: {e}")
                return CompletionResponse(error="Completion provider unreachable")
            except ValueError as e:
                logger.error(f"Gemini returned an unreadable body: {e}")
                return CompletionResponse(error="Completion provider returned an unreadable body")
            except Exception as e:
                logger.exception(f"Gemini call failed: {e}")
                return CompletionResponse(error="Completion provider failed")

            if attempt < retries:
                backoff = settings.LLM_RETRY_BACKOFF_SECONDS * (attempt + 1)
                if backoff >= deadline - loop.time():
                    break
                await asyncio.sleep(backoff)

        return CompletionResponse(error=error)


# Global singleton
completion_provider = CompletionProvider()
