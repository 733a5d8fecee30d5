"""Testing utilities for agents - MockModel."""

import asyncio
import json
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Union

from agentrun.model.message import Message, ToolCall
from agentrun.model.usage import Usage
from agentrun.provider.base import ModelResponse, synthesize_call_id
from agentrun.provider.events import Finish, StreamEvent, TextDelta, ThinkingDelta, ToolCallComplete, ToolCallDelta

ScriptedResponse = Union[str, ToolCall, List[ToolCall], Message, ModelResponse, BaseException, Dict[str, Any]]


def tool_call(name: str, arguments: Optional[Dict[str, Any]] = None, id: Optional[str] = None) -> ToolCall:
  """Shorthand for scripting a tool call in MockModel responses."""
  return ToolCall(id=id or synthesize_call_id(), name=name, arguments=arguments or {})


class MockModel:
  """
  Mock Model for unit testing agents without API calls.

  Responses are consumed in order; the last one repeats once the script
  runs out. Each scripted item may be:

  - a string: a final text answer
  - a ToolCall or list of ToolCalls: an assistant turn calling tools
  - a dict with ``content`` and/or ``tool_calls``
  - a Message or ModelResponse: returned as is
  - an exception instance: raised from the call

  Example:
      model = MockModel(responses=[
          tool_call("add", {"a": 2, "b": 3}, id="1"),
          "The answer is 5",
      ])

      # Mock with custom side effect
      def custom_response(messages, tools, settings):
          return f"Got {len(messages)} messages"

      model = MockModel(side_effect=custom_response)
  """

  def __init__(
    self,
    responses: Optional[Sequence[ScriptedResponse]] = None,
    side_effect: Optional[Callable[..., Any]] = None,
    delay: float = 0.0,
    reasoning: Optional[str] = None,
    usage: Optional[Usage] = None,
    chunk_size: int = 4,
  ):
    self.responses: List[ScriptedResponse] = list(responses or ["Mock response"])
    self.side_effect = side_effect
    self.delay = delay
    self.reasoning = reasoning
    self.usage = usage
    self.chunk_size = max(1, chunk_size)

    self._call_count = 0
    self._call_history: List[Dict[str, Any]] = []

    # Model identity
    self.id = "mock-model"
    self.provider = "mock"

  # --- Script resolution ---

  def _next(self, messages: Sequence[Message], tools: Optional[Sequence[Any]], settings: Optional[Dict[str, Any]]) -> ModelResponse:
    if self.side_effect is not None:
      item = self.side_effect(list(messages), tools, settings)
    else:
      item = self.responses[min(self._call_count, len(self.responses) - 1)]
    self._call_count += 1
    if isinstance(item, BaseException):
      raise item
    return self._to_response(item, messages)

  def _to_response(self, item: Any, messages: Sequence[Message]) -> ModelResponse:
    if isinstance(item, ModelResponse):
      return item
    if isinstance(item, Message):
      message = item
    elif isinstance(item, ToolCall):
      message = Message.assistant(tool_calls=[item])
    elif isinstance(item, list):
      message = Message.assistant(tool_calls=list(item))
    elif isinstance(item, dict):
      calls = [c if isinstance(c, ToolCall) else ToolCall(**c) for c in item.get("tool_calls") or []]
      message = Message.assistant(content=item.get("content"), tool_calls=calls)
    else:
      message = Message.assistant(content=str(item))
    if self.reasoning and message.reasoning is None:
      message = message.model_copy(update={"reasoning": self.reasoning})
    finish_reason = "tool_calls" if message.tool_calls else "stop"
    return ModelResponse(message=message, usage=self._usage_for(messages, message), finish_reason=finish_reason, model=self.id)

  def _usage_for(self, messages: Sequence[Message], reply: Message) -> Usage:
    if self.usage is not None:
      return self.usage.copy()
    input_tokens = sum(len(m.text.split()) for m in messages)
    output_tokens = len(reply.text.split()) + len(reply.tool_calls)
    return Usage(requests=1, input_tokens=input_tokens, output_tokens=output_tokens)

  def _record(self, messages: Sequence[Message], tools: Optional[Sequence[Any]], settings: Optional[Dict[str, Any]], stream: bool) -> None:
    self._call_history.append({
      "messages": list(messages),
      "tools": list(tools or []),
      "settings": dict(settings or {}),
      "stream": stream,
    })

  # --- Model interface ---

  async def ainvoke(
    self,
    messages: Sequence[Message],
    tools: Optional[Sequence[Any]] = None,
    settings: Optional[Dict[str, Any]] = None,
  ) -> ModelResponse:
    self._record(messages, tools, settings, stream=False)
    if self.delay:
      await asyncio.sleep(self.delay)
    return self._next(messages, tools, settings)

  async def ainvoke_stream(
    self,
    messages: Sequence[Message],
    tools: Optional[Sequence[Any]] = None,
    settings: Optional[Dict[str, Any]] = None,
  ) -> AsyncIterator[StreamEvent]:
    """Yield the scripted response as normalized stream events."""
    self._record(messages, tools, settings, stream=True)
    if self.delay:
      await asyncio.sleep(self.delay)
    response = self._next(messages, tools, settings)
    message = response.message

    if message.reasoning:
      yield ThinkingDelta(text=message.reasoning)
    text = message.text
    for start in range(0, len(text), self.chunk_size):
      yield TextDelta(text=text[start : start + self.chunk_size])
    for index, call in enumerate(message.tool_calls):
      yield ToolCallDelta(index=index, id=call.id, name=call.name, arguments=json.dumps(call.arguments))
    for call in message.tool_calls:
      yield ToolCallComplete(tool_call=call)
    yield Finish(reason=response.finish_reason or "stop", usage=response.usage)

  async def aclose(self) -> None:
    pass

  # --- Assertions ---

  @property
  def call_count(self) -> int:
    """Return number of times the model was called."""
    return self._call_count

  @property
  def call_history(self) -> List[Dict[str, Any]]:
    """Return history of all calls made to the model."""
    return self._call_history

  def reset(self) -> None:
    """Reset call count and history."""
    self._call_count = 0
    self._call_history.clear()

  def assert_called(self) -> None:
    """Assert that the model was called at least once."""
    assert self._call_count > 0, "Expected model to be called, but it was not"

  def assert_called_times(self, n: int) -> None:
    """Assert that the model was called exactly n times."""
    assert self._call_count == n, f"Expected model to be called {n} times, but was called {self._call_count} times"
