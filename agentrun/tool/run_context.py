from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from agentrun.model.usage import Usage


@dataclass(frozen=True)
class RunContext:
  """What a tool handler sees of the run that called it.

  ``deps`` is a read-only snapshot of the run's dependencies. Tools change
  dependencies by returning a ContextUpdate, never by mutating this view.
  """

  deps: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
  run_id: Optional[str] = None
  session_id: Optional[str] = None
  agent_name: Optional[str] = None
  iteration: int = 0
  usage: Usage = field(default_factory=Usage)
  tool_call_id: Optional[str] = None
  attempt: int = 1
  cancellation_token: Optional[Any] = None

  def get(self, key: str, default: Any = None) -> Any:
    return self.deps.get(key, default)

  @property
  def is_cancelled(self) -> bool:
    return bool(self.cancellation_token is not None and self.cancellation_token.is_cancelled)
