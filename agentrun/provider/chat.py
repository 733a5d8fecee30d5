"""Model transports: the provider boundary the runtime calls.

Each ``Model`` pairs a wire adapter with a transport. The OpenAI family goes
through the ``openai`` SDK; Anthropic and Gemini are plain HTTPS + SSE over
``httpx``. Authentication, base URLs and HTTP error mapping live here and
never reach the runtime.
"""

import os
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional, Sequence

import httpx
import openai

from agentrun.exceptions import ConfigurationError, ProtocolError, ProviderError
from agentrun.model.message import Message
from agentrun.provider.anthropic import AnthropicAdapter
from agentrun.provider.base import STREAM_DONE, ModelResponse, ProviderAdapter, WireRequest
from agentrun.provider.events import StreamEvent
from agentrun.provider.gemini import GeminiAdapter
from agentrun.provider.openai import OpenAIAdapter
from agentrun.provider.stream import normalize_stream
from agentrun.utils.log import log_debug

RETRYABLE_STATUS = (408, 409, 429)


def _is_retryable(status_code: int) -> bool:
  return status_code in RETRYABLE_STATUS or status_code >= 500


class Model(ABC):
  """Base class for model transports.

  Subclasses implement ``_send`` (one request, raw response payload) and
  ``_stream_frames`` (raw stream frames, ending with ``STREAM_DONE``).
  """

  adapter: ProviderAdapter
  provider: str = "base"

  def __init__(
    self,
    id: str,
    *,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    timeout: float = 120.0,
    settings: Optional[Dict[str, Any]] = None,
    provider: Optional[str] = None,
  ) -> None:
    self.id = id
    self.api_key = api_key
    self.base_url = base_url
    self.timeout = timeout
    self.settings = dict(settings or {})
    if provider:
      self.provider = provider

  def __repr__(self) -> str:
    return f"{type(self).__name__}(id={self.id!r}, provider={self.provider!r})"

  def build_request(
    self,
    messages: Sequence[Message],
    tools: Optional[Sequence[Any]] = None,
    settings: Optional[Dict[str, Any]] = None,
  ) -> WireRequest:
    merged = {**self.settings, **(settings or {})}
    return self.adapter.to_wire(messages, tools, merged)

  async def ainvoke(
    self,
    messages: Sequence[Message],
    tools: Optional[Sequence[Any]] = None,
    settings: Optional[Dict[str, Any]] = None,
  ) -> ModelResponse:
    request = self.build_request(messages, tools, settings)
    log_debug(f"{self.provider}:{self.id} request with {len(messages)} messages", log_level=2)
    payload = await self._send(request)
    return self.adapter.from_wire(payload)

  async def ainvoke_stream(
    self,
    messages: Sequence[Message],
    tools: Optional[Sequence[Any]] = None,
    settings: Optional[Dict[str, Any]] = None,
  ) -> AsyncIterator[StreamEvent]:
    request = self.build_request(messages, tools, settings)
    log_debug(f"{self.provider}:{self.id} streaming request with {len(messages)} messages", log_level=2)
    async for event in normalize_stream(self.adapter, self._stream_frames(request)):
      yield event

  @abstractmethod
  async def _send(self, request: WireRequest) -> Any: ...

  @abstractmethod
  def _stream_frames(self, request: WireRequest) -> AsyncIterator[Any]: ...

  async def aclose(self) -> None:
    pass


class OpenAIChat(Model):
  """OpenAI and OpenAI-compatible chat completions."""

  adapter = OpenAIAdapter()
  provider = "openai"

  def __init__(self, id: str, *, stream_usage: bool = True, **kwargs: Any) -> None:
    super().__init__(id, **kwargs)
    self.stream_usage = stream_usage
    self._client: Optional[openai.AsyncOpenAI] = None

  @property
  def client(self) -> openai.AsyncOpenAI:
    if self._client is None:
      api_key = self.api_key or os.getenv("OPENAI_API_KEY")
      if not api_key:
        raise ConfigurationError(f"No API key configured for provider '{self.provider}'")
      # Retries are handled by the runner
      self._client = openai.AsyncOpenAI(api_key=api_key, base_url=self.base_url, timeout=self.timeout, max_retries=0)
    return self._client

  def _error(self, e: Exception) -> ProviderError:
    if isinstance(e, openai.APIStatusError):
      return ProviderError(str(e), status_code=e.status_code, provider=self.provider, retryable=_is_retryable(e.status_code))
    return ProviderError(str(e), provider=self.provider, retryable=True)

  async def _send(self, request: WireRequest) -> Any:
    try:
      return await self.client.chat.completions.create(model=self.id, **request.body)
    except (openai.APIStatusError, openai.APIConnectionError) as e:
      raise self._error(e) from e

  async def _stream_frames(self, request: WireRequest) -> AsyncIterator[Any]:
    extra: Dict[str, Any] = {"stream": True}
    if self.stream_usage:
      extra["stream_options"] = {"include_usage": True}
    try:
      stream = await self.client.chat.completions.create(model=self.id, **request.body, **extra)
      async for chunk in stream:
        yield chunk
    except (openai.APIStatusError, openai.APIConnectionError) as e:
      raise self._error(e) from e
    yield STREAM_DONE

  async def aclose(self) -> None:
    if self._client is not None:
      await self._client.close()
      self._client = None


class HTTPModel(Model):
  """Shared httpx plumbing for JSON-over-HTTPS backends with SSE streaming."""

  default_base_url: str = ""
  api_key_env: str = ""

  def __init__(self, id: str, *, http_client: Optional[httpx.AsyncClient] = None, **kwargs: Any) -> None:
    super().__init__(id, **kwargs)
    self._client = http_client

  @property
  def client(self) -> httpx.AsyncClient:
    if self._client is None:
      self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=10.0))
    return self._client

  def _api_key(self) -> str:
    api_key = self.api_key or os.getenv(self.api_key_env)
    if not api_key:
      raise ConfigurationError(f"No API key configured for provider '{self.provider}' (set {self.api_key_env})")
    return api_key

  @abstractmethod
  def _url(self, stream: bool) -> str: ...

  @abstractmethod
  def _headers(self) -> Dict[str, str]: ...

  def _body(self, request: WireRequest, stream: bool) -> Dict[str, Any]:
    return request.body

  def _raise_for_status(self, response: httpx.Response, body: str) -> None:
    if response.status_code >= 400:
      raise ProviderError(
        f"{self.provider} returned HTTP {response.status_code}: {body[:500]}",
        status_code=response.status_code,
        provider=self.provider,
        retryable=_is_retryable(response.status_code),
      )

  async def _send(self, request: WireRequest) -> Any:
    try:
      response = await self.client.post(self._url(stream=False), json=self._body(request, stream=False), headers=self._headers())
    except httpx.TransportError as e:
      raise ProviderError(f"{self.provider} request failed: {e}", provider=self.provider, retryable=True) from e
    self._raise_for_status(response, response.text)
    try:
      return response.json()
    except ValueError as e:
      raise ProtocolError(f"{self.provider} returned a non-JSON body", raw=response.text, provider=self.provider) from e

  async def _stream_frames(self, request: WireRequest) -> AsyncIterator[Any]:
    try:
      async with self.client.stream(
        "POST",
        self._url(stream=True),
        json=self._body(request, stream=True),
        headers=self._headers(),
      ) as response:
        if response.status_code >= 400:
          body = (await response.aread()).decode("utf-8", errors="replace")
          self._raise_for_status(response, body)
        async for line in response.aiter_lines():
          if line.startswith("data:"):
            yield line[len("data:") :].strip()
    except httpx.TransportError as e:
      raise ProviderError(f"{self.provider} stream failed: {e}", provider=self.provider, retryable=True) from e
    yield STREAM_DONE

  async def aclose(self) -> None:
    if self._client is not None:
      await self._client.aclose()
      self._client = None


class AnthropicChat(HTTPModel):
  adapter = AnthropicAdapter()
  provider = "anthropic"
  default_base_url = "https://api.anthropic.com"
  api_key_env = "ANTHROPIC_API_KEY"
  api_version = "2023-06-01"

  def _url(self, stream: bool) -> str:
    return f"{(self.base_url or self.default_base_url).rstrip('/')}/v1/messages"

  def _headers(self) -> Dict[str, str]:
    return {
      "x-api-key": self._api_key(),
      "anthropic-version": self.api_version,
      "content-type": "application/json",
    }

  def _body(self, request: WireRequest, stream: bool) -> Dict[str, Any]:
    body = {"model": self.id, **request.body}
    if stream:
      body["stream"] = True
    return body


class GeminiChat(HTTPModel):
  adapter = GeminiAdapter()
  provider = "gemini"
  default_base_url = "https://generativelanguage.googleapis.com"
  api_key_env = "GEMINI_API_KEY"

  def _api_key(self) -> str:
    if not self.api_key and not os.getenv(self.api_key_env) and os.getenv("GOOGLE_AI_API_KEY"):
      return os.environ["GOOGLE_AI_API_KEY"]
    return super()._api_key()

  def _url(self, stream: bool) -> str:
    base = (self.base_url or self.default_base_url).rstrip("/")
    if stream:
      return f"{base}/v1beta/models/{self.id}:streamGenerateContent?alt=sse"
    return f"{base}/v1beta/models/{self.id}:generateContent"

  def _headers(self) -> Dict[str, str]:
    return {"x-goog-api-key": self._api_key(), "content-type": "application/json"}
