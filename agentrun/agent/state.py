"""Run states and the value a finished run returns."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from agentrun.exceptions import AgentRunError
from agentrun.model.usage import Usage

if TYPE_CHECKING:
  from agentrun.agent.context import Context


class RunState(str, Enum):
  IDLE = "idle"
  ITERATING = "iterating"
  AWAITING_MODEL = "awaiting_model"
  AWAITING_TOOLS = "awaiting_tools"
  AWAITING_APPROVAL = "awaiting_approval"
  FINISHED = "finished"
  CANCELLED = "cancelled"
  FAILED = "failed"

  @property
  def is_terminal(self) -> bool:
    return self in (RunState.FINISHED, RunState.CANCELLED, RunState.FAILED)


@dataclass
class RunResult:
  """Outcome of one run.

  ``state`` is always terminal. On success ``output`` holds the final answer
  (a parsed object when the agent has an ``output_type``). On cancellation or
  failure ``error`` holds the typed exception and ``partial_output`` whatever
  assistant text was produced before the run stopped.
  """

  state: RunState
  context: "Context"
  output: Any = None
  usage: Usage = field(default_factory=Usage)
  error: Optional[AgentRunError] = None
  iterations: int = 0
  partial_output: Optional[str] = None
  run_id: Optional[str] = None

  @property
  def is_success(self) -> bool:
    return self.state == RunState.FINISHED

  @property
  def is_cancelled(self) -> bool:
    return self.state == RunState.CANCELLED

  @property
  def messages(self):
    return self.context.messages

  def unwrap(self) -> Any:
    """Return the output, or raise the error that ended the run."""
    if self.error is not None:
      raise self.error
    return self.output
