from agentrun.provider.anthropic import AnthropicAdapter
from agentrun.provider.base import STREAM_DONE, ModelResponse, ProviderAdapter, WireRequest
from agentrun.provider.events import (
  Error,
  Finish,
  StreamEvent,
  TextDelta,
  ThinkingDelta,
  ToolCallComplete,
  ToolCallDelta,
  UsageUpdate,
)
from agentrun.provider.gemini import GeminiAdapter
from agentrun.provider.openai import OpenAIAdapter
from agentrun.provider.stream import ResponseBuilder, StreamBridge, normalize_stream
from agentrun.provider.utils import get_model, get_supported_providers, parse_model_string, resolve_model_string

ADAPTERS = {
  "openai": OpenAIAdapter(),
  "anthropic": AnthropicAdapter(),
  "gemini": GeminiAdapter(),
}


def get_adapter(provider: str) -> ProviderAdapter:
  """Return the wire adapter for a backend family."""
  try:
    return ADAPTERS[provider]
  except KeyError:
    raise ValueError(f"No adapter for provider '{provider}'. Known: {', '.join(sorted(ADAPTERS))}") from None


__all__ = [
  "ADAPTERS",
  "STREAM_DONE",
  "AnthropicAdapter",
  "Error",
  "Finish",
  "GeminiAdapter",
  "ModelResponse",
  "OpenAIAdapter",
  "ProviderAdapter",
  "ResponseBuilder",
  "StreamBridge",
  "StreamEvent",
  "TextDelta",
  "ThinkingDelta",
  "ToolCallComplete",
  "ToolCallDelta",
  "UsageUpdate",
  "WireRequest",
  "get_adapter",
  "get_model",
  "get_supported_providers",
  "normalize_stream",
  "parse_model_string",
  "resolve_model_string",
]
