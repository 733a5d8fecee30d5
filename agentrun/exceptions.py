"""Exception hierarchy for agentrun.

Errors the model can plausibly recover from (bad tool arguments, a failing or
slow tool, an output that does not match the requested schema) are normally
turned into conversation content by the runtime. The classes here still exist
for them so tool results and logs can name the failure precisely.
"""

from typing import Any, List, Optional


class AgentRunError(Exception):
  """Base exception for all agentrun errors."""

  def __init__(self, message: str, status_code: int = 500):
    super().__init__(message)
    self.message = message
    self.status_code = status_code
    self.type = "agentrun_error"
    self.error_id = "agentrun_error"

    # Filled in by the runner when the error terminates a run
    self.iteration: Optional[int] = None
    self.state: Optional[str] = None
    self.partial_output: Optional[str] = None

  def __str__(self) -> str:
    return self.message


class ConfigurationError(AgentRunError):
  """Raised for invalid agent, model or provider configuration."""

  def __init__(self, message: str):
    super().__init__(message, status_code=400)
    self.type = "configuration_error"
    self.error_id = "configuration_error"


class ProviderError(AgentRunError):
  """Raised when a model backend request fails at the transport or HTTP level."""

  def __init__(self, message: str, status_code: int = 502, provider: str = "", retryable: bool = False):
    super().__init__(message, status_code=status_code)
    self.provider = provider
    self.retryable = retryable
    self.type = "provider_error"
    self.error_id = "provider_error"


class ProtocolError(AgentRunError):
  """Raised when a backend returns data that cannot be interpreted."""

  def __init__(self, message: str, raw: Any = None, provider: str = ""):
    super().__init__(message, status_code=502)
    self.raw = raw
    self.provider = provider
    self.type = "protocol_error"
    self.error_id = "protocol_error"


class SchemaError(AgentRunError):
  """Tool arguments do not satisfy the tool's JSON schema."""

  def __init__(self, message: str, tool_name: str = "", errors: Optional[List[str]] = None):
    super().__init__(message, status_code=422)
    self.tool_name = tool_name
    self.errors = errors or []
    self.type = "schema_error"
    self.error_id = "schema_error"


class ToolExecutionError(AgentRunError):
  """A tool handler kept raising after all retries were used."""

  def __init__(self, message: str, tool_name: str = "", attempts: int = 1, cause: Optional[BaseException] = None):
    super().__init__(message, status_code=500)
    self.tool_name = tool_name
    self.attempts = attempts
    self.cause = cause
    self.type = "tool_execution_error"
    self.error_id = "tool_execution_error"


class ToolTimeout(AgentRunError):
  """A tool handler did not return within its timeout."""

  def __init__(self, message: str, tool_name: str = "", timeout: Optional[float] = None):
    super().__init__(message, status_code=504)
    self.tool_name = tool_name
    self.timeout = timeout
    self.type = "tool_timeout"
    self.error_id = "tool_timeout"


class MaxIterationsReached(AgentRunError):
  """The run used up its iteration budget without a final answer."""

  def __init__(self, max_iterations: int):
    super().__init__(f"Maximum iterations ({max_iterations}) reached without a final answer", status_code=500)
    self.max_iterations = max_iterations
    self.type = "max_iterations_reached"
    self.error_id = "max_iterations_reached"


class ExecutionCancelled(AgentRunError):
  """Raised when a run is cancelled through its CancellationToken."""

  def __init__(self, message: str = "Run was cancelled", reason: Optional[str] = None):
    super().__init__(message, status_code=499)
    self.reason = reason
    self.type = "execution_cancelled"
    self.error_id = "execution_cancelled"


class PluginError(AgentRunError):
  """A plugin hook raised; the run is aborted."""

  def __init__(self, plugin: str, hook: str, cause: BaseException):
    super().__init__(f"Plugin '{plugin}' failed in {hook}: {cause}", status_code=500)
    self.plugin = plugin
    self.hook = hook
    self.cause = cause
    self.type = "plugin_error"
    self.error_id = "plugin_error"


class ValidationError(AgentRunError):
  """The final output could not be coerced into the requested output type."""

  def __init__(self, message: str, errors: Optional[List[str]] = None, attempts: int = 0):
    super().__init__(message, status_code=422)
    self.errors = errors or []
    self.attempts = attempts
    self.type = "validation_error"
    self.error_id = "validation_error"


class SerializationError(AgentRunError):
  """A persisted context could not be read."""

  def __init__(self, message: str):
    super().__init__(message, status_code=400)
    self.type = "serialization_error"
    self.error_id = "serialization_error"


class NotFoundError(AgentRunError):
  """A session or persisted context does not exist."""

  def __init__(self, message: str):
    super().__init__(message, status_code=404)
    self.type = "not_found"
    self.error_id = "not_found"


class SessionExistsError(AgentRunError):
  """A session with the requested id is already registered."""

  def __init__(self, session_id: str):
    super().__init__(f"Session '{session_id}' already exists", status_code=409)
    self.session_id = session_id
    self.type = "session_exists"
    self.error_id = "session_exists"
