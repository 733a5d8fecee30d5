"""Stream bridge: adapter frames in, one well-formed normalized event stream out."""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from agentrun.exceptions import ProviderError
from agentrun.model.message import Message, ToolCall
from agentrun.model.usage import Usage
from agentrun.provider.base import ModelResponse, ProviderAdapter, decode_arguments, synthesize_call_id
from agentrun.provider.events import Error, Finish, StreamEvent, TextDelta, ThinkingDelta, ToolCallComplete, ToolCallDelta, UsageUpdate


def _max_usage(current: Optional[Usage], new: Usage) -> Usage:
  # Backends report cumulative totals, sometimes across several frames
  if current is None:
    return new.copy()
  return Usage(
    requests=max(current.requests, new.requests),
    input_tokens=max(current.input_tokens, new.input_tokens),
    output_tokens=max(current.output_tokens, new.output_tokens),
  )


@dataclass
class _PendingCall:
  id: Optional[str] = None
  name: str = ""
  arguments: str = ""


class StreamBridge:
  """Folds raw normalized events into a stream with exactly one trailing Finish.

  * ``ToolCallDelta`` fragments are buffered per index and released as
    ``ToolCallComplete`` right before the Finish.
  * ``UsageUpdate`` events are merged into the Finish usage.
  * Any later Finish only contributes usage; the first reason wins.
  """

  def __init__(self) -> None:
    self._pending: Dict[int, _PendingCall] = {}
    self._usage: Optional[Usage] = None
    self._reason: Optional[str] = None
    self._finished = False
    self._errored = False

  def feed(self, event: StreamEvent) -> List[StreamEvent]:
    if isinstance(event, ToolCallDelta):
      pending = self._pending.setdefault(event.index, _PendingCall())
      if event.id:
        pending.id = event.id
      if event.name:
        pending.name += event.name
      pending.arguments += event.arguments
      return [event]
    if isinstance(event, UsageUpdate):
      self._usage = _max_usage(self._usage, event.usage)
      return []
    if isinstance(event, Finish):
      if event.usage is not None:
        self._usage = _max_usage(self._usage, event.usage)
      if not self._finished:
        self._finished = True
        self._reason = event.reason
      return []
    if isinstance(event, Error):
      self._errored = True
    return [event]

  def close(self) -> List[StreamEvent]:
    """Flush buffered tool calls and emit the single Finish."""
    events: List[StreamEvent] = []
    for index in sorted(self._pending):
      pending = self._pending[index]
      if not pending.name:
        continue
      call = ToolCall(id=pending.id or synthesize_call_id(), name=pending.name, arguments=decode_arguments(pending.arguments))
      events.append(ToolCallComplete(tool_call=call))
    self._pending.clear()

    reason = self._reason
    if reason is None:
      reason = "error" if self._errored else "incomplete"
    events.append(Finish(reason=reason, usage=self._usage or Usage(requests=1)))
    return events


async def normalize_stream(adapter: ProviderAdapter, frames: AsyncIterator[Any]) -> AsyncIterator[StreamEvent]:
  """Run raw backend frames through ``adapter`` and the bridge.

  A stream that ends without a terminal frame still yields one Finish
  (reason ``incomplete``).
  """
  bridge = StreamBridge()
  async for frame in frames:
    for raw_event in adapter.from_stream_event(frame):
      for event in bridge.feed(raw_event):
        yield event
  for event in bridge.close():
    yield event


@dataclass
class ResponseBuilder:
  """Accumulates a normalized event stream into a ModelResponse."""

  text: List[str] = field(default_factory=list)
  thinking: List[str] = field(default_factory=list)
  tool_calls: List[ToolCall] = field(default_factory=list)
  usage: Optional[Usage] = None
  finish_reason: Optional[str] = None

  def add(self, event: StreamEvent) -> None:
    if isinstance(event, TextDelta):
      self.text.append(event.text)
    elif isinstance(event, ThinkingDelta):
      self.thinking.append(event.text)
    elif isinstance(event, ToolCallComplete) and event.tool_call is not None:
      self.tool_calls.append(event.tool_call)
    elif isinstance(event, Finish):
      self.finish_reason = event.reason
      self.usage = event.usage
    elif isinstance(event, Error):
      raise ProviderError(f"Model stream failed: {event.cause}")

  @property
  def partial_text(self) -> str:
    return "".join(self.text)

  def build(self) -> ModelResponse:
    message = Message.assistant(
      content=self.partial_text or None,
      tool_calls=list(self.tool_calls),
      reasoning="".join(self.thinking) or None,
    )
    return ModelResponse(message=message, usage=self.usage or Usage(requests=1), finish_reason=self.finish_reason)
