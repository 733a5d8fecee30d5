"""Conversation state threaded through a run, and its persisted envelope."""

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from agentrun.exceptions import SerializationError
from agentrun.model.message import Message, ToolCall
from agentrun.model.usage import Usage
from agentrun.tool.update import ContextUpdate
from agentrun.utils.log import log_debug

ENVELOPE_VERSION = 1
INTERRUPTED_RESULT = "Tool call was interrupted and not executed. Please retry if needed."


def _json_safe(deps: Mapping[str, Any]) -> Dict[str, Any]:
  """Keep only dependency values that survive a JSON round trip."""
  safe: Dict[str, Any] = {}
  for key, value in deps.items():
    try:
      json.dumps(value)
    except (TypeError, ValueError):
      log_debug(f"Dropping non-serializable dependency '{key}' ({type(value).__name__})")
      continue
    safe[key] = value
  return safe


@dataclass
class Context:
  """Messages, dependencies and usage for one conversation.

  A Context belongs to exactly one in-flight run. ``pubsub`` and
  ``approval_handler`` are live handles and are never serialized.
  """

  messages: List[Message] = field(default_factory=list)
  deps: Dict[str, Any] = field(default_factory=dict)
  usage: Usage = field(default_factory=Usage)
  system_prompt: Optional[str] = None
  session_id: Optional[str] = None
  metadata: Dict[str, Any] = field(default_factory=dict)

  pubsub: Optional[Any] = field(default=None, repr=False, compare=False)
  approval_handler: Optional[Any] = field(default=None, repr=False, compare=False)

  # --- Messages ---

  def add_message(self, message: Message) -> None:
    self.messages.append(message)

  def extend(self, messages: Iterable[Message]) -> None:
    self.messages.extend(messages)

  @property
  def last_message(self) -> Optional[Message]:
    return self.messages[-1] if self.messages else None

  def dangling_tool_calls(self) -> List[ToolCall]:
    """Tool calls with no tool-result message anywhere after them."""
    answered = {m.tool_call_id for m in self.messages if m.role == "tool"}
    return [call for m in self.messages if m.role == "assistant" for call in m.tool_calls if call.id not in answered]

  def repair_dangling(self) -> int:
    """Give every unanswered tool call a synthetic "interrupted" result.

    Results are inserted right after the tool results the assistant turn
    already has, so the conversation stays in causal order. Returns the
    number of results added.
    """
    answered = {m.tool_call_id for m in self.messages if m.role == "tool"}
    repaired: List[Message] = []
    added = 0
    i = 0
    while i < len(self.messages):
      message = self.messages[i]
      repaired.append(message)
      i += 1
      if message.role != "assistant" or not message.tool_calls:
        continue
      while i < len(self.messages) and self.messages[i].role == "tool":
        repaired.append(self.messages[i])
        i += 1
      for call in message.tool_calls:
        if call.id in answered:
          continue
        repaired.append(
          Message.tool_result(
            call.id,
            INTERRUPTED_RESULT,
            name=call.name,
            is_error=True,
            metadata={"interrupted": True},
          )
        )
        added += 1
    if added:
      self.messages = repaired
    return added

  # --- Dependencies ---

  def deps_view(self) -> Mapping[str, Any]:
    """Read-only snapshot handed to tools."""
    return MappingProxyType(dict(self.deps))

  def apply_update(self, update: Optional[ContextUpdate]) -> None:
    if update is None or update.is_empty:
      return
    self.deps = update.apply(self.deps)

  def apply_updates(self, updates: Iterable[Optional[ContextUpdate]]) -> None:
    """Apply updates serially; on key conflicts the later update wins."""
    for update in updates:
      self.apply_update(update)

  # --- Copying and serialization ---

  def copy(self) -> "Context":
    return Context(
      messages=[m.model_copy(deep=True) for m in self.messages],
      deps=dict(self.deps),
      usage=self.usage.copy(),
      system_prompt=self.system_prompt,
      session_id=self.session_id,
      metadata=dict(self.metadata),
      pubsub=self.pubsub,
      approval_handler=self.approval_handler,
    )

  def to_dict(self) -> Dict[str, Any]:
    return {
      "version": ENVELOPE_VERSION,
      "messages": [m.to_dict() for m in self.messages],
      "deps": _json_safe(self.deps),
      "usage": self.usage.to_dict(),
      "system_prompt": self.system_prompt,
      "session_id": self.session_id,
      "metadata": _json_safe(self.metadata),
    }

  def serialize(self) -> str:
    return json.dumps(self.to_dict())

  @classmethod
  def from_dict(cls, data: Mapping[str, Any], **live: Any) -> "Context":
    """Rebuild a Context from an envelope.

    ``live`` may supply ``pubsub`` / ``approval_handler`` for the restored
    context.
    """
    if not isinstance(data, Mapping):
      raise SerializationError(f"Context envelope must be an object, got {type(data).__name__}")
    version = data.get("version")
    if version != ENVELOPE_VERSION:
      raise SerializationError(f"Unsupported context envelope version: {version!r} (expected {ENVELOPE_VERSION})")
    try:
      messages = [Message.from_dict(m) for m in data.get("messages") or []]
    except PydanticValidationError as e:
      raise SerializationError(f"Invalid message in context envelope: {e}") from e
    return cls(
      messages=messages,
      deps=dict(data.get("deps") or {}),
      usage=Usage.from_dict(data.get("usage")),
      system_prompt=data.get("system_prompt"),
      session_id=data.get("session_id"),
      metadata=dict(data.get("metadata") or {}),
      **live,
    )

  @classmethod
  def deserialize(cls, payload: Any, **live: Any) -> "Context":
    if isinstance(payload, (str, bytes)):
      try:
        payload = json.loads(payload)
      except ValueError as e:
        raise SerializationError(f"Context envelope is not valid JSON: {e}") from e
    return cls.from_dict(payload, **live)
