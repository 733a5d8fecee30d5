"""Agent configuration with immutable settings."""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class AgentConfig:
  """
  Execution policy for Agent runs.

  Uses a frozen dataclass so a config cannot change while a run is using it.

  Attributes:
      max_iterations: Maximum model round trips before the run fails.
      max_tool_concurrency: Tool calls from one turn that may run at once.
      approval_timeout: Seconds to wait for an approval decision (None waits forever).
      retry_transient_errors: Whether to retry model calls on transient errors.
      max_retries: Maximum number of model retry attempts.
      retry_backoff_base: Base for exponential backoff (seconds).
      max_output_retries: Feedback rounds allowed for structured output.
      stream: Call the model in streaming mode.
      model_settings: Backend settings (temperature, max_tokens, ...).
      validate_tool_args: Validate tool arguments against their schema.
      sink_drain_timeout: Seconds to wait for event sinks to drain at run end.
  """

  # Execution settings
  max_iterations: int = 10
  max_tool_concurrency: int = 8
  approval_timeout: Optional[float] = 300.0

  # Error handling
  retry_transient_errors: bool = True
  max_retries: int = 3
  retry_backoff_base: float = 1.0  # Exponential backoff base (seconds)

  # Structured output
  max_output_retries: int = 2

  # Model
  stream: bool = False
  model_settings: Dict[str, Any] = field(default_factory=dict, hash=False)

  # Validation
  validate_tool_args: bool = True

  # Events
  sink_drain_timeout: float = 5.0

  def __post_init__(self) -> None:
    if self.max_iterations < 1:
      raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
    if self.max_tool_concurrency < 1:
      raise ValueError(f"max_tool_concurrency must be >= 1, got {self.max_tool_concurrency}")

  def with_updates(self, **kwargs) -> "AgentConfig":
    """
    Create new config with updated values (immutable pattern).

    Example:
        new_config = config.with_updates(max_retries=5, stream=True)
    """
    current = {f.name: getattr(self, f.name) for f in fields(self)}
    current["model_settings"] = dict(self.model_settings)
    current.update(kwargs)
    return AgentConfig(**current)
