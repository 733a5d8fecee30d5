"""Validated, retried, timed-out and optionally approved tool execution."""

import asyncio
import json
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from agentrun.events import ToolCallResult, ToolCallStart
from agentrun.exceptions import AgentRunError, ExecutionCancelled, SchemaError, ToolExecutionError, ToolTimeout
from agentrun.model.message import Message, ToolCall
from agentrun.tool.approval import (
  DEFAULT_APPROVAL_TIMEOUT,
  ApprovalHandler,
  ApprovalRequest,
  EditArguments,
  Reject,
  request_approval,
)
from agentrun.tool.function import ToolDefinition
from agentrun.tool.registry import ToolRegistry, clean_tool_name
from agentrun.tool.run_context import RunContext
from agentrun.tool.schema import validate_arguments
from agentrun.tool.update import ContextUpdate
from agentrun.utils.log import log_debug, log_warning

REJECTION_MESSAGE = "Tool call was rejected by approval handler."


@dataclass
class ToolReturn:
  """Explicit ``(value, update)`` return for tool handlers."""

  value: Any = None
  update: Optional[ContextUpdate] = None


@dataclass
class ToolResult:
  """Outcome of one tool call, success or failure."""

  tool_call_id: str
  tool_name: str
  value: Any = None
  error: Optional[str] = None
  error_type: Optional[str] = None
  attempts: int = 0
  update: Optional[ContextUpdate] = None
  duration: float = 0.0
  exception: Optional[AgentRunError] = field(default=None, repr=False, compare=False)

  @property
  def is_error(self) -> bool:
    return self.error is not None

  @property
  def content(self) -> str:
    if self.error is not None:
      return self.error
    return render_value(self.value)

  def to_message(self) -> Message:
    return Message.tool_result(self.tool_call_id, self.content, name=self.tool_name, is_error=self.is_error)

  def to_dict(self) -> Dict[str, Any]:
    return {
      "tool_call_id": self.tool_call_id,
      "tool_name": self.tool_name,
      "content": self.content,
      "is_error": self.is_error,
      "error_type": self.error_type,
      "attempts": self.attempts,
      "duration": round(self.duration, 4),
    }


def render_value(value: Any) -> str:
  if value is None:
    return ""
  if isinstance(value, str):
    return value
  if hasattr(value, "model_dump_json"):
    return value.model_dump_json()
  try:
    return json.dumps(value, default=str)
  except (TypeError, ValueError):
    return str(value)


def _split_return(raw: Any) -> Tuple[Any, Optional[ContextUpdate]]:
  if isinstance(raw, ToolReturn):
    return raw.value, raw.update
  if isinstance(raw, ContextUpdate):
    return None, raw
  if isinstance(raw, tuple) and len(raw) == 2 and isinstance(raw[1], ContextUpdate):
    return raw[0], raw[1]
  return raw, None


class ToolExecutor:
  """Runs the tool calls of one assistant turn.

  Each call is looked up, validated, passed through the approval gate when
  its definition requires it, then run with a per-call timeout and up to
  ``max_retries`` immediate retries. Failures become error ``ToolResult``s;
  only cancellation propagates.
  """

  def __init__(
    self,
    registry: ToolRegistry,
    *,
    approval_handler: Optional[ApprovalHandler] = None,
    approval_timeout: Optional[float] = DEFAULT_APPROVAL_TIMEOUT,
    max_concurrency: int = 8,
    validate: bool = True,
    retry_delay: float = 0.0,
    on_event: Optional[Callable[[Any], None]] = None,
    on_approval_pending: Optional[Callable[[int], None]] = None,
  ) -> None:
    self.registry = registry
    self.approval_handler = approval_handler
    self.approval_timeout = approval_timeout
    self.validate = validate
    self.retry_delay = retry_delay
    self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
    self._on_event = on_event
    self._on_approval_pending = on_approval_pending
    self._pending_approvals = 0

  # ------------------------------------------------------------------
  # Public API
  # ------------------------------------------------------------------

  async def execute_batch(self, calls: Sequence[ToolCall], context_for: Callable[[ToolCall], RunContext]) -> List[ToolResult]:
    """Execute calls concurrently; results come back in call order."""
    tasks = [self.execute(call, context_for(call)) for call in calls]
    outcomes = await asyncio.gather(*tasks, return_exceptions=True)

    results: List[ToolResult] = []
    for call, outcome in zip(calls, outcomes):
      if isinstance(outcome, ExecutionCancelled):
        raise outcome
      if isinstance(outcome, BaseException):
        if isinstance(outcome, asyncio.CancelledError):
          raise outcome
        error = ToolExecutionError(str(outcome), tool_name=call.name, attempts=1, cause=outcome)
        results.append(self._failure(call, call.name, error, self._execution_failure_text(call.name, outcome, 1), attempts=1))
      else:
        results.append(outcome)
    return results

  async def execute(self, call: ToolCall, context: RunContext) -> ToolResult:
    started = time.monotonic()
    self._emit(ToolCallStart(run_id=context.run_id, session_id=context.session_id, tool_call=call))
    result = await self._execute(call, context)
    result.duration = time.monotonic() - started
    self._emit(ToolCallResult(run_id=context.run_id, session_id=context.session_id, result=result))
    return result

  # ------------------------------------------------------------------
  # Steps
  # ------------------------------------------------------------------

  async def _execute(self, call: ToolCall, context: RunContext) -> ToolResult:
    name = clean_tool_name(call.name)
    definition = self.registry.get(name)
    if definition is None:
      return ToolResult(tool_call_id=call.id, tool_name=name, error=f"Tool not found: {name}", error_type="not_found")

    arguments = call.arguments
    schema_failure = self._validate(call, definition, arguments)
    if schema_failure is not None:
      return schema_failure

    if definition.requires_approval:
      decision = await self._approve(call, definition, arguments, context)
      if isinstance(decision, Reject):
        text = REJECTION_MESSAGE if not decision.reason else f"{REJECTION_MESSAGE} Reason: {decision.reason}"
        return ToolResult(tool_call_id=call.id, tool_name=name, error=text, error_type="rejected")
      if isinstance(decision, EditArguments):
        arguments = decision.arguments
        schema_failure = self._validate(call, definition, arguments)
        if schema_failure is not None:
          return schema_failure

    return await self._run_with_retries(call, definition, arguments, context)

  def _validate(self, call: ToolCall, definition: ToolDefinition, arguments: Any) -> Optional[ToolResult]:
    if not self.validate:
      return None
    try:
      validate_arguments(definition.name, definition.parameters, arguments)
    except SchemaError as e:
      log_debug(f"Schema error for tool '{definition.name}': {e}")
      return self._failure(call, definition.name, e, str(e), attempts=0)
    return None

  async def _approve(self, call: ToolCall, definition: ToolDefinition, arguments: Dict[str, Any], context: RunContext) -> Any:
    request = ApprovalRequest(
      tool_call=call,
      tool_name=definition.name,
      arguments=arguments,
      run_id=context.run_id,
      session_id=context.session_id,
    )
    if self.approval_handler is None:
      log_warning(f"Tool '{definition.name}' requires approval but no approval handler is configured")
      return Reject(reason="No approval handler is configured")

    self._emit(request.to_event())
    self._set_pending(+1)
    try:
      return await request_approval(self.approval_handler, request, self.approval_timeout, context.cancellation_token)
    finally:
      self._set_pending(-1)

  async def _run_with_retries(
    self,
    call: ToolCall,
    definition: ToolDefinition,
    arguments: Dict[str, Any],
    context: RunContext,
  ) -> ToolResult:
    max_attempts = definition.max_retries + 1
    async with self._semaphore:
      for attempt in range(1, max_attempts + 1):
        attempt_context = replace(context, attempt=attempt, tool_call_id=call.id)
        try:
          if definition.timeout is not None:
            raw = await asyncio.wait_for(definition.invoke(attempt_context, arguments), definition.timeout)
          else:
            raw = await definition.invoke(attempt_context, arguments)
          if isinstance(raw, Exception):
            raise raw
        except asyncio.TimeoutError:
          log_warning(f"Tool '{definition.name}' timed out after {definition.timeout}s")
          error = ToolTimeout(
            f"Tool '{definition.name}' timed out after {definition.timeout}s",
            tool_name=definition.name,
            timeout=definition.timeout,
          )
          return self._failure(call, definition.name, error, str(error), attempts=attempt)
        except ExecutionCancelled:
          raise
        except Exception as e:
          if attempt < max_attempts:
            log_warning(f"Tool '{definition.name}' failed (attempt {attempt}/{max_attempts}): {e}. Retrying")
            if self.retry_delay:
              await asyncio.sleep(self.retry_delay)
            continue
          error = ToolExecutionError(str(e), tool_name=definition.name, attempts=attempt, cause=e)
          return self._failure(call, definition.name, error, self._execution_failure_text(definition.name, e, attempt), attempts=attempt)

        value, update = _split_return(raw)
        return ToolResult(tool_call_id=call.id, tool_name=definition.name, value=value, update=update, attempts=attempt)

    # Unreachable, but keeps type checkers happy
    raise RuntimeError("Exhausted tool attempts")  # pragma: no cover

  # ------------------------------------------------------------------
  # Helpers
  # ------------------------------------------------------------------

  def _failure(self, call: ToolCall, name: str, error: AgentRunError, text: str, attempts: int) -> ToolResult:
    return ToolResult(
      tool_call_id=call.id,
      tool_name=name,
      error=text,
      error_type=error.type,
      attempts=attempts,
      exception=error,
    )

  @staticmethod
  def _execution_failure_text(name: str, error: BaseException, attempts: int) -> str:
    return (
      f"Tool execution failed: {name}\n"
      f"Error: {error}\n"
      f"Attempts: {attempts}\n\n"
      "Please try a different approach or tool if available."
    )

  def _emit(self, event: Any) -> None:
    if self._on_event is not None:
      self._on_event(event)

  def _set_pending(self, delta: int) -> None:
    self._pending_approvals += delta
    if self._on_approval_pending is not None:
      self._on_approval_pending(self._pending_approvals)
