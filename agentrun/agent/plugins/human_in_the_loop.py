"""Human-in-the-loop approval for selected tools."""

from typing import Any, Iterable, List, Optional

from agentrun.agent.plugin import Plugin
from agentrun.tool.function import ToolDefinition
from agentrun.utils.log import log_debug


class HumanInTheLoop(Plugin):
  """Require approval before the listed tools run.

  Example::

      async def ask(request):
          return input(f"Run {request.tool_name}({request.arguments})? [y/n] ") == "y"

      agent = Agent(model, tools=[send_email, search], plugins=[HumanInTheLoop(["send_email"], ask)])

  With ``tools=None`` every tool requires approval. When ``handler`` is
  omitted the run falls back to the agent's handler (or the PubSub handler
  for sessions with a pubsub).
  """

  name = "human_in_the_loop"

  def __init__(self, tools: Optional[Iterable[str]] = None, handler: Optional[Any] = None) -> None:
    self.tool_names = set(tools) if tools is not None else None
    self.handler = handler

  def init(self, agent: Any, context: Any) -> None:
    if self.handler is not None and context.approval_handler is None:
      context.approval_handler = self.handler

  def prepare_tools(self, definitions: List[ToolDefinition]) -> List[ToolDefinition]:
    prepared = []
    for definition in definitions:
      if self.tool_names is None or definition.name in self.tool_names:
        log_debug(f"Tool '{definition.name}' requires approval", log_level=2)
        definition = definition.with_approval()
      prepared.append(definition)
    return prepared
