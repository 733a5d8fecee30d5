"""Normalized streaming vocabulary shared by every provider adapter."""

from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Dict, Optional

from agentrun.model.message import ToolCall
from agentrun.model.usage import Usage


@dataclass
class StreamEvent:
  event: ClassVar[str] = "stream_event"

  def to_dict(self) -> Dict[str, Any]:
    data: Dict[str, Any] = {"event": self.event}
    for key, value in asdict(self).items():
      if value is not None:
        data[key] = value
    return data


@dataclass
class TextDelta(StreamEvent):
  event: ClassVar[str] = "text_delta"

  text: str = ""


@dataclass
class ThinkingDelta(StreamEvent):
  event: ClassVar[str] = "thinking_delta"

  text: str = ""


@dataclass
class ToolCallDelta(StreamEvent):
  """A fragment of a tool call. ``arguments`` is a partial JSON string."""

  event: ClassVar[str] = "tool_call_delta"

  index: int = 0
  id: Optional[str] = None
  name: Optional[str] = None
  arguments: str = ""


@dataclass
class ToolCallComplete(StreamEvent):
  event: ClassVar[str] = "tool_call_complete"

  tool_call: Optional[ToolCall] = None

  def to_dict(self) -> Dict[str, Any]:
    return {"event": self.event, "tool_call": self.tool_call.model_dump() if self.tool_call else None}


@dataclass
class UsageUpdate(StreamEvent):
  """Token totals reported mid-stream; folded into the final Finish by the stream bridge."""

  event: ClassVar[str] = "usage_update"

  usage: Usage = field(default_factory=Usage)


@dataclass
class Finish(StreamEvent):
  event: ClassVar[str] = "finish"

  reason: Optional[str] = None
  usage: Optional[Usage] = None

  def to_dict(self) -> Dict[str, Any]:
    return {"event": self.event, "reason": self.reason, "usage": self.usage.to_dict() if self.usage else None}


@dataclass
class Error(StreamEvent):
  event: ClassVar[str] = "error"

  cause: str = ""
  error: Optional[BaseException] = field(default=None, repr=False, compare=False)

  def to_dict(self) -> Dict[str, Any]:
    data: Dict[str, Any] = {"event": self.event, "cause": self.cause}
    if self.error is not None:
      data["error_type"] = type(self.error).__name__
    return data
