"""Plugin interface and the ordered hook chain the runner drives."""

import inspect
from typing import TYPE_CHECKING, Any, List, Optional, Sequence

from agentrun.exceptions import ExecutionCancelled, PluginError
from agentrun.model.message import Message
from agentrun.tool.function import ToolDefinition
from agentrun.tool.update import ContextUpdate
from agentrun.utils.log import log_debug, log_error

if TYPE_CHECKING:
  from agentrun.agent.agent import Agent
  from agentrun.agent.context import Context
  from agentrun.tool.executor import ToolResult


class Plugin:
  """Base class for agent plugins.

  Every hook is optional; define only the ones you need. Hooks may be plain
  or ``async`` methods and run in registration order. A hook that raises
  aborts the run with ``PluginError``.

  Hooks:
      init(agent, context): once per run, before the first iteration.
      tools(agent) -> list: extra tools (callables or ToolDefinitions).
      prepare_tools(definitions) -> list | None: rewrite the run's tool set.
      system_prompt(context) -> str | None: text appended to the system prompt.
      before_request(context, messages) -> list | None: rewrite outgoing messages.
      after_response(context, message) -> Message | None: rewrite the assistant turn.
      on_tool_result(context, result) -> ContextUpdate | None: replace a result's update.
  """

  name: Optional[str] = None

  @property
  def plugin_name(self) -> str:
    return self.name or type(self).__name__


def plugin_name(plugin: Any) -> str:
  return getattr(plugin, "plugin_name", None) or getattr(plugin, "name", None) or type(plugin).__name__


class PluginChain:
  def __init__(self, plugins: Optional[Sequence[Any]] = None) -> None:
    self.plugins: List[Any] = list(plugins or [])

  def __len__(self) -> int:
    return len(self.plugins)

  async def _call(self, plugin: Any, hook: str, *args: Any) -> Any:
    fn = getattr(plugin, hook, None)
    if fn is None:
      return None
    try:
      result = fn(*args)
      if inspect.isawaitable(result):
        result = await result
      return result
    except (ExecutionCancelled, PluginError):
      raise
    except Exception as e:
      name = plugin_name(plugin)
      log_error(f"Plugin '{name}' failed in {hook}: {e}")
      raise PluginError(name, hook, e) from e

  async def init(self, agent: "Agent", context: "Context") -> None:
    for plugin in self.plugins:
      await self._call(plugin, "init", agent, context)

  async def tools(self, agent: "Agent") -> List[Any]:
    collected: List[Any] = []
    for plugin in self.plugins:
      collected.extend(await self._call(plugin, "tools", agent) or [])
    return collected

  async def prepare_tools(self, definitions: List[ToolDefinition]) -> List[ToolDefinition]:
    for plugin in self.plugins:
      result = await self._call(plugin, "prepare_tools", list(definitions))
      if result is not None:
        definitions = list(result)
    return definitions

  async def system_prompts(self, context: "Context") -> List[str]:
    prompts: List[str] = []
    for plugin in self.plugins:
      text = await self._call(plugin, "system_prompt", context)
      if text:
        prompts.append(text)
    return prompts

  async def before_request(self, context: "Context", messages: List[Message]) -> List[Message]:
    for plugin in self.plugins:
      result = await self._call(plugin, "before_request", context, messages)
      if result is not None:
        messages = list(result)
    return messages

  async def after_response(self, context: "Context", message: Message) -> Message:
    for plugin in self.plugins:
      result = await self._call(plugin, "after_response", context, message)
      if result is not None:
        message = result
    return message

  async def on_tool_result(self, context: "Context", result: "ToolResult") -> Optional[ContextUpdate]:
    update = result.update
    for plugin in self.plugins:
      replaced = await self._call(plugin, "on_tool_result", context, result)
      if replaced is not None:
        log_debug(f"Plugin '{plugin_name(plugin)}' replaced the update of {result.tool_name}", log_level=2)
        update = replaced
        result.update = replaced
    return update
