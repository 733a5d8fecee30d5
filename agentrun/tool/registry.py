from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union

from agentrun.exceptions import ConfigurationError
from agentrun.tool.function import ToolDefinition

ToolLike = Union[ToolDefinition, Callable[..., Any]]


def clean_tool_name(name: str) -> str:
  """Some models leak quoting into tool names (``add"}``); keep the part before the first quote."""
  return name.split('"')[0].strip()


def as_definition(tool: ToolLike) -> ToolDefinition:
  if isinstance(tool, ToolDefinition):
    return tool
  if callable(tool):
    return ToolDefinition.from_callable(tool)
  raise ConfigurationError(f"Cannot use {tool!r} as a tool")


class ToolRegistry:
  """Name-indexed set of tool definitions, in registration order."""

  def __init__(self, tools: Optional[Iterable[ToolLike]] = None) -> None:
    self._tools: Dict[str, ToolDefinition] = {}
    for t in tools or []:
      self.register(t)

  def register(self, tool: ToolLike) -> ToolDefinition:
    definition = as_definition(tool)
    if definition.name in self._tools:
      raise ConfigurationError(f"Tool '{definition.name}' is already registered")
    self._tools[definition.name] = definition
    return definition

  def replace(self, definition: ToolDefinition) -> None:
    self._tools[definition.name] = definition

  def get(self, name: str) -> Optional[ToolDefinition]:
    return self._tools.get(name) or self._tools.get(clean_tool_name(name))

  def names(self) -> List[str]:
    return list(self._tools)

  def definitions(self) -> List[ToolDefinition]:
    return list(self._tools.values())

  def __contains__(self, name: object) -> bool:
    return isinstance(name, str) and self.get(name) is not None

  def __iter__(self) -> Iterator[ToolDefinition]:
    return iter(self._tools.values())

  def __len__(self) -> int:
    return len(self._tools)
