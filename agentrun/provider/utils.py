"""Model string resolution: maps 'provider:model-id' to Model instances."""

import os
from importlib import import_module
from typing import Any, Dict, Optional, Tuple, Union

from agentrun.exceptions import ConfigurationError

# provider -> (module_path, class_name)
# Lazy imports: a transport module is only loaded when a provider asks for it.
_PROVIDER_MAP: Dict[str, Tuple[str, str]] = {
  "openai": ("agentrun.provider.chat", "OpenAIChat"),
  "anthropic": ("agentrun.provider.chat", "AnthropicChat"),
  "gemini": ("agentrun.provider.chat", "GeminiChat"),
  "groq": ("agentrun.provider.chat", "OpenAIChat"),
  "mistral": ("agentrun.provider.chat", "OpenAIChat"),
  "ollama": ("agentrun.provider.chat", "OpenAIChat"),
  "lmstudio": ("agentrun.provider.chat", "OpenAIChat"),
  "openrouter": ("agentrun.provider.chat", "OpenAIChat"),
  "together": ("agentrun.provider.chat", "OpenAIChat"),
  "vllm": ("agentrun.provider.chat", "OpenAIChat"),
  "sglang": ("agentrun.provider.chat", "OpenAIChat"),
  "custom": ("agentrun.provider.chat", "OpenAIChat"),
}

# OpenAI-compatible backends: provider -> (default base_url, api key env var)
_OPENAI_COMPATIBLE: Dict[str, Tuple[Optional[str], Optional[str]]] = {
  "groq": ("https://api.groq.com/openai/v1", "GROQ_API_KEY"),
  "mistral": ("https://api.mistral.ai/v1", "MISTRAL_API_KEY"),
  "ollama": ("http://localhost:11434/v1", None),
  "lmstudio": ("http://localhost:1234/v1", None),
  "openrouter": ("https://openrouter.ai/api/v1", "OPENROUTER_API_KEY"),
  "together": ("https://api.together.xyz/v1", "TOGETHER_API_KEY"),
  "vllm": (None, "VLLM_API_KEY"),
  "sglang": ("http://localhost:30000/v1", None),
  "custom": (None, None),
}

# Local servers accept any key
_LOCAL_API_KEY = "not-needed"
_LOCAL_PROVIDERS = {"ollama", "lmstudio", "vllm", "sglang", "custom"}


def get_supported_providers() -> list[str]:
  """Return sorted list of supported provider names."""
  return sorted(_PROVIDER_MAP.keys())


def parse_model_string(model_string: str) -> Tuple[str, str]:
  """Split 'provider:model-id' into its parts.

  Only the first ``:`` separates the provider, so ids such as
  ``ollama:llama3:8b`` keep their tag.
  """
  if not model_string or not isinstance(model_string, str):
    raise ConfigurationError(f"Model string must be a non-empty string, got: {model_string!r}")
  provider, sep, model_id = model_string.partition(":")
  provider = provider.strip().lower()
  model_id = model_id.strip()
  if not sep or not provider or not model_id:
    raise ConfigurationError(f"Invalid model string '{model_string}'. Expected 'provider:model-id', e.g. 'openai:gpt-4o'")
  if provider not in _PROVIDER_MAP:
    supported = ", ".join(get_supported_providers())
    raise ConfigurationError(f"Unknown model provider '{provider}'. Supported providers: {supported}")
  return provider, model_id


def resolve_model_string(model_string: str, **kwargs: Any) -> Any:
  """Resolve a 'provider:model-id' string into a Model instance.

  Keyword arguments (``api_key``, ``base_url``, ``settings`` ...) are passed to
  the transport. ``vllm`` and ``custom`` require ``base_url``.
  """
  provider, model_id = parse_model_string(model_string)

  if provider in _OPENAI_COMPATIBLE:
    default_url, key_env = _OPENAI_COMPATIBLE[provider]
    kwargs.setdefault("base_url", default_url)
    if not kwargs.get("base_url"):
      raise ConfigurationError(f"Provider '{provider}' requires a base_url")
    if not kwargs.get("api_key"):
      api_key = os.getenv(key_env) if key_env else None
      if not api_key and provider not in _LOCAL_PROVIDERS:
        raise ConfigurationError(f"No API key configured for provider '{provider}' (set {key_env})")
      kwargs["api_key"] = api_key or _LOCAL_API_KEY
    kwargs["provider"] = provider

  module_path, class_name = _PROVIDER_MAP[provider]
  module = import_module(module_path)
  model_class = getattr(module, class_name)
  return model_class(model_id, **kwargs)


def get_model(model: Union[Any, str, None], **kwargs: Any) -> Any:
  """Resolve a model argument.

  Accepts a model object (passthrough), a 'provider:model-id' string, or None.
  """
  if model is None:
    return None
  if isinstance(model, str):
    return resolve_model_string(model, **kwargs)
  return model
