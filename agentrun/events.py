"""
Run events: everything a run emits to its sinks, in one place.

Model stream events (``TextDelta``, ``Finish`` ...) come from
``agentrun.provider.events``; the runtime adds tool, approval and run
lifecycle events.

Usage:
    from agentrun.events import TextDelta, ToolCallStart, RunCompleted
"""

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional

from agentrun.model.message import ToolCall
from agentrun.model.usage import Usage
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


@dataclass
class RunEvent(StreamEvent):
  event: ClassVar[str] = "run_event"

  run_id: Optional[str] = None
  session_id: Optional[str] = None


@dataclass
class RunStarted(RunEvent):
  event: ClassVar[str] = "run_started"

  agent_name: Optional[str] = None


@dataclass
class ToolCallStart(RunEvent):
  event: ClassVar[str] = "tool_call_start"

  tool_call: Optional[ToolCall] = None

  def to_dict(self) -> Dict[str, Any]:
    return {
      "event": self.event,
      "run_id": self.run_id,
      "session_id": self.session_id,
      "tool_call": self.tool_call.model_dump() if self.tool_call else None,
    }


@dataclass
class ToolCallResult(RunEvent):
  event: ClassVar[str] = "tool_result"

  # agentrun.tool.executor.ToolResult
  result: Any = None

  def to_dict(self) -> Dict[str, Any]:
    return {
      "event": self.event,
      "run_id": self.run_id,
      "session_id": self.session_id,
      "result": self.result.to_dict() if self.result is not None else None,
    }


@dataclass
class ApprovalRequired(RunEvent):
  event: ClassVar[str] = "approval_required"

  tool_call: Optional[ToolCall] = None
  tool_name: str = ""
  arguments: Optional[Dict[str, Any]] = None

  def to_dict(self) -> Dict[str, Any]:
    return {
      "event": self.event,
      "run_id": self.run_id,
      "session_id": self.session_id,
      "tool_call_id": self.tool_call.id if self.tool_call else None,
      "tool_name": self.tool_name,
      "arguments": self.arguments,
    }


@dataclass
class RunCompleted(RunEvent):
  event: ClassVar[str] = "run_completed"

  output: Any = None
  usage: Optional[Usage] = None

  def to_dict(self) -> Dict[str, Any]:
    output = self.output.model_dump(mode="json") if hasattr(self.output, "model_dump") else self.output
    return {
      "event": self.event,
      "run_id": self.run_id,
      "session_id": self.session_id,
      "output": output,
      "usage": self.usage.to_dict() if self.usage else None,
    }


@dataclass
class RunCancelled(RunEvent):
  event: ClassVar[str] = "run_cancelled"

  partial_output: Optional[str] = None
  reason: Optional[str] = None


@dataclass
class RunFailed(RunEvent):
  event: ClassVar[str] = "run_failed"

  error_type: str = ""
  message: str = ""
  iteration: Optional[int] = None


TERMINAL_EVENTS = (RunCompleted, RunCancelled, RunFailed)

__all__ = [
  "ApprovalRequired",
  "Error",
  "Finish",
  "RunCancelled",
  "RunCompleted",
  "RunEvent",
  "RunFailed",
  "RunStarted",
  "StreamEvent",
  "TERMINAL_EVENTS",
  "TextDelta",
  "ThinkingDelta",
  "ToolCallComplete",
  "ToolCallDelta",
  "ToolCallResult",
  "ToolCallStart",
  "UsageUpdate",
]
