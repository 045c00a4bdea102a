"""Provider backends for the interpretation gateway.

Two interchangeable implementations of one async contract:

- OpenAIBackend calls a chat-completions endpoint directly (any
  OpenAI-compatible base URL).
- ProxyBackend posts the sanitized payload to the hosted ``ai-generate``
  function, which holds its own provider keys and builds its own prompts.

Backends raise BackendError subclasses; the gateway decides what happens next.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import httpx
from openai import AsyncOpenAI, OpenAIError, RateLimitError
from pydantic import BaseModel, Field

from silkspark.ai.constants import (
    DEFAULT_LOCALE,
    DEFAULT_MODEL,
    DEFAULT_TIMEOUT_SECONDS,
    EDGE_FUNCTION_NAME,
    ERROR_INVALID_REQUEST,
    ERROR_NO_API_KEY,
    ERROR_RATE_LIMIT_EXCEEDED,
)
from silkspark.ai.errors import BackendError, BackendRateLimited, MissingAPIKey

logger = logging.getLogger(__name__)

_QUOTA_MARKERS = ("429", "RESOURCE_EXHAUSTED", "rate limit", "quota")


class BackendRequest(BaseModel):
    kind: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    system: str = ""
    user: str = ""
    locale: str = DEFAULT_LOCALE
    model: str = DEFAULT_MODEL
    temperature: float = 0.7
    max_tokens: int = 2048


class BackendResult(BaseModel):
    text: str
    provider: str
    model: str = ""
    is_fallback: bool = False


class Backend(Protocol):
    name: str

    async def generate(self, request: BackendRequest) -> BackendResult: ...


def _looks_like_quota(message: str) -> bool:
    lowered = message.lower()
    return any(marker.lower() in lowered for marker in _QUOTA_MARKERS)


class OpenAIBackend:
    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[Any] = None,
    ):
        self.api_key = api_key
        self._client = client
        if self._client is None and api_key:
            self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def generate(self, request: BackendRequest) -> BackendResult:
        if self._client is None:
            raise MissingAPIKey("OPENAI_API_KEY is not set")

        messages = [{"role": "user", "content": request.user}]
        if request.system:
            messages.insert(0, {"role": "system", "content": request.system})

        try:
            response = await self._client.chat.completions.create(
                model=request.model,
                messages=messages,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
            )
        except RateLimitError as e:
            raise BackendRateLimited(str(e)) from e
        except OpenAIError as e:
            if _looks_like_quota(str(e)):
                raise BackendRateLimited(str(e)) from e
            raise BackendError(f"{type(e).__name__}: {e}") from e

        text = ""
        if response.choices:
            text = (response.choices[0].message.content or "").strip()
        if not text:
            raise BackendError("empty completion")
        return BackendResult(text=text, provider=self.name, model=getattr(response, "model", None) or request.model)


class ProxyBackend:
    name = "proxy"

    def __init__(
        self,
        base_url: Optional[str],
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        function_name: str = EDGE_FUNCTION_NAME,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.function_name = function_name
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/functions/v1/{self.function_name}"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        return headers

    async def _post(self, body: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.endpoint, json=body, headers=self._headers())
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.endpoint, json=body, headers=self._headers())

    async def generate(self, request: BackendRequest) -> BackendResult:
        if not self.configured:
            raise BackendError("AI_PROXY_URL is not set", code=ERROR_NO_API_KEY)

        body = {
            "type": request.kind,
            "payload": request.payload,
            "locale": request.locale,
            "model": request.model,
        }
        try:
            response = await self._post(body)
        except httpx.HTTPError as e:
            raise BackendError(f"proxy transport error: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        code = data.get("errorCode") or data.get("code")
        if response.status_code == 429 or code == ERROR_RATE_LIMIT_EXCEEDED:
            raise BackendRateLimited(data.get("error") or "proxy rate limited")
        if code == ERROR_INVALID_REQUEST:
            raise BackendError(data.get("error") or "proxy rejected request", code=ERROR_INVALID_REQUEST)
        if response.status_code >= 400 or data.get("success") is False:
            raise BackendError(f"proxy error {response.status_code}: {data.get('error') or 'unknown'}", code=code)

        # {success, data: {text}} or a bare {analysis|interpretation}
        text = ""
        for source in (data.get("data"), data):
            if isinstance(source, dict):
                text = source.get("text") or source.get("analysis") or source.get("interpretation") or ""
            if text:
                break
        if not isinstance(text, str) or not text.strip():
            raise BackendError("proxy returned no text")

        meta = data.get("meta") or {}
        logger.debug("proxy served %s via %s", request.kind, meta.get("provider"))
        return BackendResult(
            text=text.strip(),
            provider=self.name,
            model=meta.get("model") or request.model,
            is_fallback=bool(meta.get("isFallback")),
        )
