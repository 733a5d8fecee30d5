"""Provider adapter interface and the shapes it exchanges with the runtime."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from agentrun.exceptions import ProtocolError
from agentrun.model.message import Message
from agentrun.model.usage import Usage
from agentrun.provider.events import StreamEvent
from agentrun.utils.log import log_warning

# Terminal frame a transport feeds to ``from_stream_event`` once the backend
# stream is exhausted. Raw OpenAI-style ``data: [DONE]`` lines are accepted too.
STREAM_DONE = "[DONE]"


@dataclass
class WireRequest:
  """A backend-specific request body, minus transport concerns (auth, URL)."""

  provider: str
  body: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ModelResponse:
  """A complete, normalized model reply."""

  message: Message
  usage: Usage = field(default_factory=Usage)
  finish_reason: Optional[str] = None
  model: Optional[str] = None


class ProviderAdapter(ABC):
  """Translates between the canonical Message list and one backend family.

  Adapters are stateless; the stream bridge in ``agentrun.provider.stream``
  holds the per-stream state (argument buffers, the single Finish).
  """

  name: str = "base"

  @abstractmethod
  def to_wire(
    self,
    messages: Sequence[Message],
    tools: Optional[Sequence[Any]] = None,
    settings: Optional[Dict[str, Any]] = None,
  ) -> WireRequest: ...

  @abstractmethod
  def from_wire(self, payload: Any) -> ModelResponse: ...

  @abstractmethod
  def from_wire_messages(self, request: WireRequest) -> List[Message]: ...

  @abstractmethod
  def from_stream_event(self, frame: Any) -> List[StreamEvent]: ...

  @abstractmethod
  def tools_to_wire(self, tools: Sequence[Any]) -> List[Dict[str, Any]]: ...

  # --- Shared helpers ---

  def _require_mapping(self, payload: Any, what: str = "response") -> Dict[str, Any]:
    if isinstance(payload, (str, bytes)):
      try:
        payload = json.loads(payload)
      except ValueError as e:
        raise ProtocolError(f"{self.name} {what} is not valid JSON: {e}", raw=payload, provider=self.name) from e
    if not isinstance(payload, dict):
      raise ProtocolError(f"{self.name} {what} must be a JSON object, got {type(payload).__name__}", raw=payload, provider=self.name)
    return payload


def is_stream_done(frame: Any) -> bool:
  if not isinstance(frame, str):
    return False
  text = frame.strip()
  if text.startswith("data:"):
    text = text[len("data:") :].strip()
  return text == STREAM_DONE


def decode_arguments(arguments: Any) -> Dict[str, Any]:
  """Normalize tool arguments delivered as a JSON string or a native mapping."""
  if arguments is None or arguments == "":
    return {}
  if isinstance(arguments, dict):
    return arguments
  if isinstance(arguments, str):
    try:
      decoded = json.loads(arguments)
    except ValueError:
      log_warning(f"Failed to decode tool arguments: {arguments!r}")
      return {"error": "Invalid JSON arguments", "raw": arguments}
    if isinstance(decoded, dict):
      return decoded
    return {"value": decoded}
  return {"value": arguments}


def tool_schema(tool: Any) -> Dict[str, Any]:
  """Read (name, description, parameters) off a ToolDefinition or a plain dict."""
  if isinstance(tool, dict):
    return {
      "name": tool["name"],
      "description": tool.get("description") or "",
      "parameters": tool.get("parameters") or {"type": "object", "properties": {}},
    }
  return {
    "name": tool.name,
    "description": tool.description or "",
    "parameters": tool.parameters or {"type": "object", "properties": {}},
  }


def synthesize_call_id() -> str:
  return f"call_{uuid4().hex[:24]}"
