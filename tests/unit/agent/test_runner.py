"""
Unit tests for the agent run loop, driven by MockModel.

Covers the tool round trip, the iteration budget, cancellation, transient
model retries, plugin failures, structured output with feedback retries,
context continuation and dangling-call repair, dependency updates, usage
accounting and the event stream. No API calls.
"""

import asyncio
from typing import List

import pytest
from pydantic import BaseModel

from agentrun.agent import Agent, AgentConfig, CancellationToken, Context, Plugin, RunState
from agentrun.agent.context import INTERRUPTED_RESULT
from agentrun.agent.testing import MockModel, tool_call
from agentrun.events import ApprovalRequired, RunCancelled, RunCompleted, RunFailed, RunStarted, ToolCallResult, ToolCallStart
from agentrun.exceptions import (
  AgentRunError,
  ExecutionCancelled,
  MaxIterationsReached,
  PluginError,
  ProviderError,
  ValidationError,
)
from agentrun.model.message import Message, ToolCall
from agentrun.provider.events import Finish, TextDelta
from agentrun.tool import Approve, ContextUpdate, RunContext, tool


@tool
def add(a: int, b: int) -> int:
  """Add two numbers."""
  return a + b


class Weather(BaseModel):
  city: str
  temp: int


def _collector():
  events: List = []
  return events, events.append


@pytest.mark.unit
class TestToolRoundTrip:
  @pytest.mark.asyncio
  async def test_add_example(self):
    model = MockModel(responses=[tool_call("add", {"a": 2, "b": 3}, id="1"), "The answer is 5"])
    agent = Agent(model, tools=[add], instructions="You do arithmetic.")

    result = await agent.run("What is 2 + 3?")

    assert result.state == RunState.FINISHED
    assert result.output == "The answer is 5"
    assert result.unwrap() == "The answer is 5"
    assert result.iterations == 2
    model.assert_called_times(2)

    roles = [m.role for m in result.messages]
    assert roles == ["user", "assistant", "tool", "assistant"]
    tool_message = result.messages[2]
    assert tool_message.tool_call_id == "1"
    assert tool_message.text == "5"
    assert not tool_message.is_error

    usage = result.usage
    assert usage.requests == 2
    assert usage.tool_calls == 1
    assert usage.iterations == 2

  @pytest.mark.asyncio
  async def test_model_sees_system_prompt_history_and_tools(self):
    model = MockModel(responses=[tool_call("add", {"a": 1, "b": 1}, id="1"), "2"])
    agent = Agent(model, tools=[add], instructions="Be exact.")
    await agent.run("1 + 1?")

    first = model.call_history[0]
    assert first["messages"][0].role == "system"
    assert first["messages"][0].text == "Be exact."
    assert [t.name for t in first["tools"]] == ["add"]

    second = model.call_history[1]["messages"]
    assert [m.role for m in second] == ["system", "user", "assistant", "tool"]

  @pytest.mark.asyncio
  async def test_parallel_tool_calls_results_in_call_order(self):
    @tool
    async def slow_echo(text: str, delay: float) -> str:
      await asyncio.sleep(delay)
      return text

    model = MockModel(
      responses=[
        [tool_call("slow_echo", {"text": "first", "delay": 0.05}, id="a"), tool_call("slow_echo", {"text": "second", "delay": 0.0}, id="b")],
        "done",
      ]
    )
    result = await Agent(model, tools=[slow_echo]).run("go")
    tool_messages = [m for m in result.messages if m.role == "tool"]
    assert [m.tool_call_id for m in tool_messages] == ["a", "b"]
    assert [m.text for m in tool_messages] == ["first", "second"]

  @pytest.mark.asyncio
  async def test_tool_errors_are_fed_back(self):
    @tool(max_retries=0)
    def broken() -> str:
      raise RuntimeError("disk full")

    model = MockModel(responses=[tool_call("broken", id="1"), tool_call("missing", id="2"), "gave up"])
    result = await Agent(model, tools=[broken]).run("try")

    assert result.is_success
    errors = [m for m in result.messages if m.role == "tool"]
    assert all(m.is_error for m in errors)
    assert "disk full" in errors[0].text
    assert errors[1].text == "Tool not found: missing"

  @pytest.mark.asyncio
  async def test_schema_errors_are_fed_back(self):
    model = MockModel(responses=[tool_call("add", {"a": "two", "b": 3}, id="1"), tool_call("add", {"a": 2, "b": 3}, id="2"), "5"])
    result = await Agent(model, tools=[add]).run("2 + 3")
    tool_messages = [m for m in result.messages if m.role == "tool"]
    assert tool_messages[0].is_error
    assert "Invalid arguments for tool 'add'" in tool_messages[0].text
    assert tool_messages[1].text == "5"


@pytest.mark.unit
class TestIterationBudget:
  @pytest.mark.asyncio
  async def test_max_iterations(self):
    model = MockModel(responses=[tool_call("add", {"a": 1, "b": 1})])
    agent = Agent(model, tools=[add], config=AgentConfig(max_iterations=3))

    result = await agent.run("loop forever")

    assert result.state == RunState.FAILED
    assert isinstance(result.error, MaxIterationsReached)
    assert result.error.max_iterations == 3
    assert result.error.iteration == 3
    assert model.call_count == 3
    assert result.usage.requests == 3
    with pytest.raises(MaxIterationsReached):
      result.unwrap()

  @pytest.mark.asyncio
  async def test_single_iteration_answer(self):
    model = MockModel(responses=["hi"])
    result = await Agent(model, config=AgentConfig(max_iterations=1)).run("hello")
    assert result.is_success
    assert result.iterations == 1


@pytest.mark.unit
class TestCancellation:
  @pytest.mark.asyncio
  async def test_cancelled_before_start(self):
    model = MockModel(responses=["never"])
    token = CancellationToken()
    token.cancel("not needed")

    result = await Agent(model).run("hi", cancellation_token=token)

    assert result.state == RunState.CANCELLED
    assert result.is_cancelled
    assert isinstance(result.error, ExecutionCancelled)
    assert result.error.reason == "not needed"
    assert model.call_count == 0

  @pytest.mark.asyncio
  async def test_cancel_from_tool_stops_at_next_iteration(self):
    @tool
    def stop(ctx: RunContext) -> str:
      ctx.cancellation_token.cancel("tool asked")
      return "stopping"

    model = MockModel(responses=[{"content": "Working on it", "tool_calls": [ToolCall(id="1", name="stop")]}, "unreachable"])
    events, sink = _collector()
    result = await Agent(model, tools=[stop]).run("go", sinks=[sink])

    assert result.state == RunState.CANCELLED
    assert model.call_count == 1
    assert result.partial_output == "Working on it"
    assert result.messages[-1].role == "tool"
    assert isinstance(events[-1], RunCancelled)
    assert events[-1].reason == "tool asked"

  @pytest.mark.asyncio
  async def test_cancel_during_model_call(self):
    model = MockModel(responses=["slow answer", "next"], delay=0.1)
    token = CancellationToken()

    async def cancel_soon():
      await asyncio.sleep(0.02)
      token.cancel()

    canceller = asyncio.create_task(cancel_soon())
    result = await Agent(model).run("hi", cancellation_token=token)
    await canceller

    # The in-flight call completes; the run stops right after it
    assert result.state == RunState.CANCELLED
    assert model.call_count == 1
    assert result.partial_output == "slow answer"

  @pytest.mark.asyncio
  async def test_task_cancellation_propagates(self):
    model = MockModel(responses=["slow"], delay=1.0)
    task = asyncio.create_task(Agent(model).run("hi"))
    await asyncio.sleep(0.02)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
      await task

  @pytest.mark.asyncio
  async def test_cancel_while_awaiting_approval(self):
    @tool(requires_approval=True)
    def launch(target: str) -> str:
      """Launch at a target."""
      return f"launched {target}"

    never = asyncio.Event()
    asked = []

    async def wait_for_human(request):
      asked.append(request.tool_name)
      await never.wait()
      return Approve()

    model = MockModel(responses=[tool_call("launch", {"target": "moon"}, id="c1"), "unreachable"])
    agent = Agent(model, tools=[launch], approval_handler=wait_for_human, config=AgentConfig(approval_timeout=None))
    token = CancellationToken()

    async def cancel_soon():
      await asyncio.sleep(0.05)
      token.cancel("user walked away")

    canceller = asyncio.create_task(cancel_soon())
    events, sink = _collector()
    result = await asyncio.wait_for(agent.run("go", cancellation_token=token, sinks=[sink]), timeout=1)
    await canceller

    assert asked == ["launch"]
    assert result.state == RunState.CANCELLED
    assert result.error.reason == "user walked away"
    assert model.call_count == 1
    tool_message = result.messages[-1]
    assert tool_message.role == "tool"
    assert tool_message.tool_call_id == "c1"
    assert tool_message.text == INTERRUPTED_RESULT
    assert isinstance(events[-1], RunCancelled)


@pytest.mark.unit
class TestModelErrors:
  @pytest.mark.asyncio
  async def test_transient_errors_are_retried(self):
    model = MockModel(responses=[ProviderError("overloaded", status_code=529, retryable=True), "recovered"])
    agent = Agent(model, config=AgentConfig(retry_backoff_base=0.0))
    result = await agent.run("hi")
    assert result.output == "recovered"
    assert model.call_count == 2

  @pytest.mark.asyncio
  async def test_non_retryable_error_fails_run(self):
    model = MockModel(responses=[ProviderError("bad request", status_code=400), "unreachable"])
    result = await Agent(model, config=AgentConfig(retry_backoff_base=0.0)).run("hi")
    assert result.state == RunState.FAILED
    assert isinstance(result.error, ProviderError)
    assert result.error.state == "awaiting_model"
    assert model.call_count == 1

  @pytest.mark.asyncio
  async def test_retries_exhausted(self):
    model = MockModel(responses=[ProviderError("down", retryable=True)])
    agent = Agent(model, config=AgentConfig(max_retries=2, retry_backoff_base=0.0))
    result = await agent.run("hi")
    assert isinstance(result.error, ProviderError)
    assert model.call_count == 3

  @pytest.mark.asyncio
  async def test_retry_disabled(self):
    model = MockModel(responses=[ProviderError("down", retryable=True), "ok"])
    agent = Agent(model, config=AgentConfig(retry_transient_errors=False))
    result = await agent.run("hi")
    assert result.state == RunState.FAILED
    assert model.call_count == 1

  @pytest.mark.asyncio
  async def test_unexpected_exception_is_wrapped(self):
    model = MockModel(responses=[KeyError("weird")])
    events, sink = _collector()
    result = await Agent(model).run("hi", sinks=[sink])
    assert type(result.error) is AgentRunError
    assert "KeyError" in str(result.error)
    assert isinstance(result.error.__cause__, KeyError)
    assert isinstance(events[-1], RunFailed)


class Boom(Plugin):
  name = "boom"

  def before_request(self, context, messages):
    raise RuntimeError("plugin exploded")


@pytest.mark.unit
class TestPluginsInLoop:
  @pytest.mark.asyncio
  async def test_plugin_error_fails_run(self):
    model = MockModel(responses=["never"])
    result = await Agent(model, plugins=[Boom()]).run("hi")
    assert result.state == RunState.FAILED
    assert isinstance(result.error, PluginError)
    assert result.error.plugin == "boom"
    assert result.error.hook == "before_request"
    assert model.call_count == 0

  @pytest.mark.asyncio
  async def test_system_prompt_and_tools_from_plugins(self):
    class Extra(Plugin):
      def tools(self, agent):
        return [add]

      def system_prompt(self, context):
        return "Plugin rules."

    model = MockModel(responses=["ok"])
    await Agent(model, instructions="Base rules.", plugins=[Extra()]).run("hi")
    call = model.call_history[0]
    assert call["messages"][0].text == "Base rules.\n\nPlugin rules."
    assert [t.name for t in call["tools"]] == ["add"]

  @pytest.mark.asyncio
  async def test_after_response_can_rewrite_message(self):
    class Redact(Plugin):
      async def after_response(self, context, message):
        return message.model_copy(update={"content": message.text.replace("secret", "[redacted]")})

    model = MockModel(responses=["the secret is 42"])
    result = await Agent(model, plugins=[Redact()]).run("tell me")
    assert result.output == "the [redacted] is 42"

  @pytest.mark.asyncio
  async def test_on_tool_result_replaces_update(self):
    @tool
    def remember(value: str):
      return "ok", ContextUpdate().set("value", value)

    class Override(Plugin):
      def on_tool_result(self, context, result):
        return ContextUpdate().set("value", "overridden")

    model = MockModel(responses=[tool_call("remember", {"value": "orig"}), "done"])
    result = await Agent(model, tools=[remember], plugins=[Override()]).run("go")
    assert result.context.deps["value"] == "overridden"


@pytest.mark.unit
class TestStructuredOutput:
  @pytest.mark.asyncio
  async def test_parses_output_type(self):
    model = MockModel(responses=['```json\n{"city": "Paris", "temp": 21}\n```'])
    result = await Agent(model, output_type=Weather).run("weather?")
    assert result.output == Weather(city="Paris", temp=21)
    assert "JSON schema" in model.call_history[0]["messages"][0].text

  @pytest.mark.asyncio
  async def test_retry_with_feedback(self):
    model = MockModel(responses=['{"city": "Paris"}', '{"city": "Paris", "temp": 21}'])
    result = await Agent(model, output_type=Weather).run("weather?")
    assert result.output.temp == 21
    feedback = [m for m in result.messages if m.metadata.get("output_feedback")]
    assert len(feedback) == 1
    assert "temp" in feedback[0].text

  @pytest.mark.asyncio
  async def test_retries_exhausted(self):
    model = MockModel(responses=["not json at all"])
    result = await Agent(model, output_type=Weather, config=AgentConfig(max_output_retries=1)).run("weather?")
    assert result.state == RunState.FAILED
    assert isinstance(result.error, ValidationError)
    assert result.error.attempts == 2
    assert model.call_count == 2

  @pytest.mark.asyncio
  async def test_list_output_type(self):
    model = MockModel(responses=["[1, 2, 3]"])
    result = await Agent(model, output_type=List[int]).run("numbers")
    assert result.output == [1, 2, 3]


@pytest.mark.unit
class TestContextContinuation:
  @pytest.mark.asyncio
  async def test_continue_from_result_context(self):
    model = MockModel(responses=["first answer", "second answer"])
    agent = Agent(model)
    first = await agent.run("one")
    second = await agent.run("two", context=first.context)

    assert [m.text for m in second.messages] == ["one", "first answer", "two", "second answer"]
    assert second.usage.requests == 2
    # The first result's context is untouched
    assert len(first.messages) == 2

  @pytest.mark.asyncio
  async def test_caller_context_not_mutated(self):
    context = Context(deps={"k": 1})
    model = MockModel(responses=["ok"])
    await Agent(model).run("hi", context=context)
    assert context.messages == []
    assert context.usage.requests == 0

  @pytest.mark.asyncio
  async def test_dangling_calls_repaired_on_resume(self):
    context = Context(
      messages=[
        Message.user("start"),
        Message.assistant(tool_calls=[ToolCall(id="lost", name="add", arguments={"a": 1, "b": 2})]),
      ]
    )
    model = MockModel(responses=["resumed"])
    result = await Agent(model, tools=[add]).run("continue", context=context)

    roles = [m.role for m in result.messages]
    assert roles == ["user", "assistant", "tool", "user", "assistant"]
    repaired = result.messages[2]
    assert repaired.tool_call_id == "lost"
    assert repaired.is_error
    assert repaired.text == INTERRUPTED_RESULT
    assert result.context.dangling_tool_calls() == []

  @pytest.mark.asyncio
  async def test_context_system_prompt_overrides_instructions(self):
    model = MockModel(responses=["ok"])
    agent = Agent(model, instructions="Agent default.")
    await agent.run("hi", context=Context(system_prompt="Session prompt."))
    assert model.call_history[0]["messages"][0].text == "Session prompt."


@pytest.mark.unit
class TestDependencies:
  @pytest.mark.asyncio
  async def test_updates_visible_to_later_tools(self):
    seen = []

    @tool
    def set_user(name: str):
      return "saved", ContextUpdate().set("user", name)

    @tool
    def whoami(ctx: RunContext) -> str:
      seen.append(ctx.get("user"))
      return str(ctx.get("user"))

    model = MockModel(responses=[tool_call("set_user", {"name": "ada"}), tool_call("whoami"), "done"])
    result = await Agent(model, tools=[set_user, whoami]).run("go", deps={"user": "nobody"})

    assert seen == ["ada"]
    assert result.context.deps["user"] == "ada"

  @pytest.mark.asyncio
  async def test_later_call_wins_on_conflict(self):
    @tool
    def put(value: int):
      return value, ContextUpdate().set("slot", value)

    model = MockModel(responses=[[tool_call("put", {"value": 1}, id="a"), tool_call("put", {"value": 2}, id="b")], "done"])
    result = await Agent(model, tools=[put]).run("go")
    assert result.context.deps["slot"] == 2

  @pytest.mark.asyncio
  async def test_tools_cannot_mutate_deps_directly(self):
    @tool
    def sneaky(ctx: RunContext) -> str:
      try:
        ctx.deps["x"] = 2
      except TypeError:
        return "blocked"
      return "mutated"

    model = MockModel(responses=[tool_call("sneaky", id="1"), "done"])
    result = await Agent(model, tools=[sneaky]).run("go", deps={"x": 1})
    assert result.messages[2].text == "blocked"
    assert result.context.deps["x"] == 1


@pytest.mark.unit
class TestUsage:
  @pytest.mark.asyncio
  async def test_usage_is_monotonic_across_runs(self):
    model = MockModel(responses=[tool_call("add", {"a": 1, "b": 1}), "two", "again"])
    agent = Agent(model, tools=[add])
    first = await agent.run("1 + 1")
    second = await agent.run("again", context=first.context)

    for name in ("requests", "input_tokens", "output_tokens", "tool_calls", "iterations"):
      assert getattr(second.usage, name) >= getattr(first.usage, name)
    assert second.usage.requests == first.usage.requests + 1

  @pytest.mark.asyncio
  async def test_tools_see_usage_snapshot(self):
    seen = []

    @tool
    def read_usage(ctx: RunContext) -> int:
      seen.append((ctx.iteration, ctx.usage.requests))
      return 0

    model = MockModel(responses=[tool_call("read_usage"), "done"])
    await Agent(model, tools=[read_usage]).run("go")
    assert seen == [(1, 1)]


@pytest.mark.unit
class TestEvents:
  @pytest.mark.asyncio
  async def test_event_sequence(self):
    events, sink = _collector()
    model = MockModel(responses=[tool_call("add", {"a": 2, "b": 3}, id="1"), "5"])
    result = await Agent(model, tools=[add]).run("2 + 3", sinks=[sink])

    assert isinstance(events[0], RunStarted)
    assert isinstance(events[-1], RunCompleted)
    assert events[-1].output == "5"
    assert events[-1].run_id == result.run_id
    kinds = [type(e) for e in events]
    assert kinds.index(ToolCallStart) < kinds.index(ToolCallResult)
    assert sum(1 for e in events if isinstance(e, Finish)) == 2
    assert sum(1 for e in events if isinstance(e, (RunCompleted, RunCancelled, RunFailed))) == 1

  @pytest.mark.asyncio
  async def test_streaming_mode(self):
    events, sink = _collector()
    model = MockModel(responses=["Hello streaming world"], chunk_size=5)
    result = await Agent(model, config=AgentConfig(stream=True)).run("hi", sinks=[sink])

    deltas = [e.text for e in events if isinstance(e, TextDelta)]
    assert len(deltas) > 1
    assert "".join(deltas) == "Hello streaming world"
    assert result.output == "Hello streaming world"
    assert model.call_history[0]["stream"] is True

  @pytest.mark.asyncio
  async def test_streaming_tool_calls(self):
    model = MockModel(responses=[tool_call("add", {"a": 4, "b": 5}, id="s1"), "9"])
    result = await Agent(model, tools=[add], config=AgentConfig(stream=True)).run("4 + 5")
    assert result.output == "9"
    assert result.messages[2].text == "9"

  @pytest.mark.asyncio
  async def test_run_stream(self):
    model = MockModel(responses=[tool_call("add", {"a": 2, "b": 2}), "4"])
    agent = Agent(model, tools=[add])
    events = [event async for event in agent.run_stream("2 + 2")]
    assert isinstance(events[0], RunStarted)
    assert isinstance(events[-1], RunCompleted)
    assert events[-1].output == "4"

  @pytest.mark.asyncio
  async def test_failing_sink_does_not_break_run(self):
    def bad_sink(event):
      raise RuntimeError("sink down")

    model = MockModel(responses=["fine"])
    result = await Agent(model).run("hi", sinks=[bad_sink])
    assert result.output == "fine"

  @pytest.mark.asyncio
  async def test_approval_required_event(self):
    @tool(requires_approval=True)
    def launch(target: str) -> str:
      return f"launched {target}"

    events, sink = _collector()
    model = MockModel(responses=[tool_call("launch", {"target": "moon"}), "done"])
    result = await Agent(model, tools=[launch], approval_handler=lambda request: Approve()).run("go", sinks=[sink])
    assert any(isinstance(e, ApprovalRequired) for e in events)
    assert result.messages[2].text == "launched moon"


@pytest.mark.unit
class TestAgent:
  def test_string_model_resolved_lazily(self, monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "x")
    agent = Agent("anthropic:claude-test")
    assert agent.model == "anthropic:claude-test"
    assert agent.resolved_model.id == "claude-test"

  def test_run_sync(self):
    result = Agent(MockModel(responses=["sync"])).run_sync("hi")
    assert result.output == "sync"

  def test_plain_functions_become_tools(self):
    def multiply(a: int, b: int) -> int:
      return a * b

    agent = Agent(MockModel(), tools=[multiply])
    assert agent.tools[0].name == "multiply"

  @pytest.mark.asyncio
  async def test_message_prompt(self):
    model = MockModel(responses=["seen"])
    result = await Agent(model).run(Message.user("hello", metadata={"source": "test"}))
    assert result.messages[0].metadata == {"source": "test"}

  @pytest.mark.asyncio
  async def test_run_without_sinks(self):
    result = await Agent(MockModel(responses=["hi"])).run("hello")
    assert result.state == RunState.FINISHED
    assert result.output == "hi"
