"""
Unit tests for PluginChain hook dispatch.

Hooks are optional, may be sync or async, run in registration order, and any
exception is surfaced as PluginError naming the plugin and hook.
"""

import pytest

from agentrun.agent.context import Context
from agentrun.agent.plugin import Plugin, PluginChain, plugin_name
from agentrun.exceptions import ExecutionCancelled, PluginError
from agentrun.model.message import Message
from agentrun.tool import ContextUpdate, ToolDefinition
from agentrun.tool.executor import ToolResult


class Recorder(Plugin):
  def __init__(self, label, log):
    self.name = label
    self.log = log

  def init(self, agent, context):
    self.log.append((self.name, "init"))

  async def system_prompt(self, context):
    return f"from {self.name}"

  def before_request(self, context, messages):
    self.log.append((self.name, "before_request"))
    return [*messages, Message.user(self.name)]


class Bare:
  """Duck-typed plugin without the base class."""


@pytest.mark.unit
class TestPluginChain:
  @pytest.mark.asyncio
  async def test_hooks_run_in_order(self):
    log = []
    chain = PluginChain([Recorder("a", log), Recorder("b", log)])
    await chain.init(None, Context())
    messages = await chain.before_request(Context(), [Message.user("hi")])

    assert log == [("a", "init"), ("b", "init"), ("a", "before_request"), ("b", "before_request")]
    assert [m.text for m in messages] == ["hi", "a", "b"]

  @pytest.mark.asyncio
  async def test_missing_hooks_are_skipped(self):
    chain = PluginChain([Bare(), Plugin()])
    await chain.init(None, Context())
    assert await chain.tools(None) == []
    assert await chain.system_prompts(Context()) == []
    message = Message.assistant("x")
    assert await chain.after_response(Context(), message) is message

  @pytest.mark.asyncio
  async def test_system_prompts_collected(self):
    chain = PluginChain([Recorder("a", []), Recorder("b", [])])
    assert await chain.system_prompts(Context()) == ["from a", "from b"]

  @pytest.mark.asyncio
  async def test_prepare_tools(self):
    class OnlyFirst(Plugin):
      def prepare_tools(self, definitions):
        return definitions[:1]

    definitions = [ToolDefinition(name="a"), ToolDefinition(name="b")]
    result = await PluginChain([OnlyFirst()]).prepare_tools(definitions)
    assert [d.name for d in result] == ["a"]

  @pytest.mark.asyncio
  async def test_error_wrapped_with_plugin_and_hook(self):
    class Faulty(Plugin):
      name = "faulty"

      async def after_response(self, context, message):
        raise KeyError("oops")

    with pytest.raises(PluginError) as exc_info:
      await PluginChain([Faulty()]).after_response(Context(), Message.assistant("x"))
    assert exc_info.value.plugin == "faulty"
    assert exc_info.value.hook == "after_response"
    assert isinstance(exc_info.value.cause, KeyError)

  @pytest.mark.asyncio
  async def test_cancellation_passes_through(self):
    class Stopper(Plugin):
      def init(self, agent, context):
        raise ExecutionCancelled(reason="stop")

    with pytest.raises(ExecutionCancelled):
      await PluginChain([Stopper()]).init(None, Context())

  @pytest.mark.asyncio
  async def test_on_tool_result_last_replacement_wins(self):
    class Replace(Plugin):
      def __init__(self, value):
        self.value = value

      def on_tool_result(self, context, result):
        return ContextUpdate().set("k", self.value)

    class Observe(Plugin):
      def on_tool_result(self, context, result):
        return None

    result = ToolResult(tool_call_id="1", tool_name="t", value="v", update=ContextUpdate().set("k", "orig"))
    update = await PluginChain([Replace(1), Observe(), Replace(2)]).on_tool_result(Context(), result)
    assert update.apply({}) == {"k": 2}
    assert result.update is update

  def test_plugin_name(self):
    assert plugin_name(Bare()) == "Bare"
    assert plugin_name(Plugin()) == "Plugin"
    assert len(PluginChain([Bare()])) == 1
