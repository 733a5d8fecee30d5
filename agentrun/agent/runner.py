"""The agent run loop.

One ``AgentRunner`` drives one run: it asks the model, dispatches tool calls,
feeds results back and repeats until the model answers without tool calls,
the iteration budget runs out, or the run is cancelled.
"""

import asyncio
from typing import TYPE_CHECKING, Any, List, Optional
from uuid import uuid4

from agentrun.agent.cancellation import CancellationToken
from agentrun.agent.context import Context
from agentrun.agent.output import feedback_message, is_structured, output_instructions, parse_output
from agentrun.agent.plugin import PluginChain
from agentrun.agent.sinks import EventDispatcher
from agentrun.agent.state import RunResult, RunState
from agentrun.events import RunCancelled, RunCompleted, RunFailed, RunStarted
from agentrun.exceptions import (
  AgentRunError,
  ExecutionCancelled,
  MaxIterationsReached,
  ProviderError,
  ValidationError,
)
from agentrun.model.message import Message, ToolCall
from agentrun.provider.base import ModelResponse
from agentrun.provider.events import Error, Finish, TextDelta, ThinkingDelta, ToolCallComplete
from agentrun.provider.stream import ResponseBuilder
from agentrun.tool.executor import ToolExecutor, ToolResult
from agentrun.tool.registry import ToolRegistry
from agentrun.tool.run_context import RunContext
from agentrun.utils.log import log_debug, log_exception, log_info, log_warning

if TYPE_CHECKING:
  from agentrun.agent.agent import Agent

# Events forwarded from a model stream to the sinks
_FORWARDED_STREAM_EVENTS = (TextDelta, ThinkingDelta, ToolCallComplete, Finish, Error)


def _is_transient(error: BaseException) -> bool:
  if isinstance(error, ProviderError):
    return error.retryable
  if isinstance(error, AgentRunError):
    return False
  return isinstance(error, (ConnectionError, TimeoutError, OSError))


class AgentRunner:
  """Drives a single run of an Agent against a Context."""

  def __init__(
    self,
    agent: "Agent",
    context: Context,
    *,
    run_id: Optional[str] = None,
    cancellation_token: Optional[CancellationToken] = None,
    dispatcher: Optional[EventDispatcher] = None,
    approval_handler: Optional[Any] = None,
  ) -> None:
    self.agent = agent
    self.config = agent.config
    self.context = context
    self.run_id = run_id or str(uuid4())
    self.cancellation_token = cancellation_token or CancellationToken()
    self.dispatcher = dispatcher or EventDispatcher()
    self.plugins = PluginChain(agent.plugins)

    self._approval_handler = approval_handler
    self._state = RunState.IDLE
    self._iteration = 0
    self._output_retries = 0
    self._partial_output: Optional[str] = None
    self._registry: Optional[ToolRegistry] = None
    self._executor: Optional[ToolExecutor] = None

  # ------------------------------------------------------------------
  # State
  # ------------------------------------------------------------------

  @property
  def state(self) -> RunState:
    return self._state

  @property
  def iteration(self) -> int:
    return self._iteration

  def _transition(self, state: RunState) -> None:
    if state != self._state:
      log_debug(f"Run {self.run_id}: {self._state.value} -> {state.value}", log_level=2)
      self._state = state

  def _emit(self, event: Any) -> None:
    self.dispatcher.emit(event)

  def _check_cancelled(self) -> None:
    self.cancellation_token.raise_if_cancelled()

  # ------------------------------------------------------------------
  # Public API
  # ------------------------------------------------------------------

  async def run(self) -> RunResult:
    """Run to a terminal state. Never raises for typed run failures."""
    self._emit(RunStarted(run_id=self.run_id, session_id=self.context.session_id, agent_name=self.agent.name))
    try:
      output = await self._loop()
    except ExecutionCancelled as e:
      return self._cancelled(e)
    except AgentRunError as e:
      return self._failed(e)
    except asyncio.CancelledError:
      self._cancelled(ExecutionCancelled("Run task was cancelled"))
      raise
    except Exception as e:
      log_exception(f"Run {self.run_id} crashed: {e}")
      error = AgentRunError(f"{type(e).__name__}: {e}")
      error.__cause__ = e
      return self._failed(error)

    self._transition(RunState.FINISHED)
    usage = self.context.usage.copy()
    self._emit(RunCompleted(run_id=self.run_id, session_id=self.context.session_id, output=output, usage=usage))
    return RunResult(
      state=RunState.FINISHED,
      context=self.context,
      output=output,
      usage=usage,
      iterations=self._iteration,
      partial_output=self._partial_output,
      run_id=self.run_id,
    )

  # ------------------------------------------------------------------
  # Terminal handling
  # ------------------------------------------------------------------

  def _annotate(self, error: AgentRunError) -> None:
    error.iteration = self._iteration
    error.state = self._state.value
    error.partial_output = self._partial_output

  def _cancelled(self, error: ExecutionCancelled) -> RunResult:
    self._annotate(error)
    self.context.repair_dangling()
    self._transition(RunState.CANCELLED)
    log_info(f"Run {self.run_id} cancelled at iteration {self._iteration}")
    self._emit(
      RunCancelled(
        run_id=self.run_id,
        session_id=self.context.session_id,
        partial_output=self._partial_output,
        reason=error.reason,
      )
    )
    return self._result(RunState.CANCELLED, error)

  def _failed(self, error: AgentRunError) -> RunResult:
    self._annotate(error)
    self.context.repair_dangling()
    self._transition(RunState.FAILED)
    log_warning(f"Run {self.run_id} failed in state {error.state} at iteration {self._iteration}: {error}")
    self._emit(
      RunFailed(
        run_id=self.run_id,
        session_id=self.context.session_id,
        error_type=error.type,
        message=str(error),
        iteration=self._iteration,
      )
    )
    return self._result(RunState.FAILED, error)

  def _result(self, state: RunState, error: AgentRunError) -> RunResult:
    return RunResult(
      state=state,
      context=self.context,
      usage=self.context.usage.copy(),
      error=error,
      iterations=self._iteration,
      partial_output=self._partial_output,
      run_id=self.run_id,
    )

  # ------------------------------------------------------------------
  # Setup
  # ------------------------------------------------------------------

  async def _setup(self) -> None:
    repaired = self.context.repair_dangling()
    if repaired:
      log_info(f"Repaired {repaired} dangling tool call(s) before resuming")

    await self.plugins.init(self.agent, self.context)

    registry = ToolRegistry(self.agent.tools)
    for extra in await self.plugins.tools(self.agent):
      registry.register(extra)
    definitions = await self.plugins.prepare_tools(registry.definitions())
    self._registry = ToolRegistry(definitions)

    self._executor = ToolExecutor(
      self._registry,
      approval_handler=self._resolve_approval_handler(),
      approval_timeout=self.config.approval_timeout,
      max_concurrency=self.config.max_tool_concurrency,
      validate=self.config.validate_tool_args,
      on_event=self._emit,
      on_approval_pending=self._on_approval_pending,
    )

  def _resolve_approval_handler(self) -> Optional[Any]:
    if self._approval_handler is not None:
      return self._approval_handler
    if self.context.approval_handler is not None:
      return self.context.approval_handler
    if self.agent.approval_handler is not None:
      return self.agent.approval_handler
    if self.context.pubsub is not None and self.context.session_id:
      from agentrun.tool.approval import PubSubApprovalHandler

      return PubSubApprovalHandler(self.context.pubsub, self.context.session_id)
    return None

  def _on_approval_pending(self, pending: int) -> None:
    self._transition(RunState.AWAITING_APPROVAL if pending else RunState.AWAITING_TOOLS)

  # ------------------------------------------------------------------
  # Loop
  # ------------------------------------------------------------------

  async def _loop(self) -> Any:
    await self._setup()
    max_iterations = self.config.max_iterations

    while True:
      self._transition(RunState.ITERATING)
      self._check_cancelled()
      if self._iteration >= max_iterations:
        raise MaxIterationsReached(max_iterations)
      self._iteration += 1
      self.context.usage.record_iteration()

      messages = await self._build_messages()
      self._transition(RunState.AWAITING_MODEL)
      response = await self._call_model(messages)
      self.context.usage.record_request(response.usage.input_tokens, response.usage.output_tokens)

      message = await self.plugins.after_response(self.context, response.message)
      self.context.add_message(message)
      if message.text:
        self._partial_output = message.text
      self._check_cancelled()

      if not message.tool_calls:
        try:
          return self._final_output(message)
        except ValidationError as e:
          self._retry_output(e)
          continue

      self._transition(RunState.AWAITING_TOOLS)
      await self._run_tools(message.tool_calls)

  async def _build_messages(self) -> List[Message]:
    parts: List[str] = []
    base = self.context.system_prompt or self.agent.instructions
    if base:
      parts.append(base)
    parts.extend(await self.plugins.system_prompts(self.context))
    if is_structured(self.agent.output_type):
      parts.append(output_instructions(self.agent.output_type))

    messages: List[Message] = []
    if parts:
      messages.append(Message.system("\n\n".join(parts)))
    messages.extend(self.context.messages)
    return await self.plugins.before_request(self.context, messages)

  def _final_output(self, message: Message) -> Any:
    return parse_output(self.agent.output_type, message.text)

  def _retry_output(self, error: ValidationError) -> None:
    self._output_retries += 1
    error.attempts = self._output_retries
    if self._output_retries > self.config.max_output_retries:
      raise error
    log_debug(f"Structured output invalid (retry {self._output_retries}/{self.config.max_output_retries}): {error}")
    self.context.add_message(feedback_message(error))

  # ------------------------------------------------------------------
  # Model calls
  # ------------------------------------------------------------------

  async def _call_model(self, messages: List[Message]) -> ModelResponse:
    """Model call with retry on transient errors (exponential backoff)."""
    max_retries = self.config.max_retries if self.config.retry_transient_errors else 0
    backoff_base = self.config.retry_backoff_base
    tools = self._registry.definitions() if self._registry else []
    model = self.agent.resolved_model

    for attempt in range(max_retries + 1):
      log_debug(f"Model request to {getattr(model, 'provider', '?')}:{getattr(model, 'id', '?')} (iteration {self._iteration})")
      streamed = False
      try:
        if self.config.stream:
          builder = ResponseBuilder()
          async for event in model.ainvoke_stream(messages, tools or None, self.config.model_settings):
            if isinstance(event, _FORWARDED_STREAM_EVENTS):
              streamed = True
              self._emit(event)
            builder.add(event)
            if builder.partial_text:
              self._partial_output = builder.partial_text
          return builder.build()

        response = await model.ainvoke(messages, tools or None, self.config.model_settings)
        if response.message.text:
          self._emit(TextDelta(text=response.message.text))
        self._emit(Finish(reason=response.finish_reason or "stop", usage=response.usage))
        return response
      except Exception as e:
        if streamed or not self.config.retry_transient_errors or not _is_transient(e):
          raise
        if attempt >= max_retries:
          raise
        delay = min(backoff_base * (2**attempt), 60.0)
        log_warning(f"Transient model error (attempt {attempt + 1}/{max_retries + 1}): {e}. Retrying in {delay:.1f}s")
        await asyncio.sleep(delay)

    # Unreachable, but keeps type checkers happy
    raise RuntimeError("Exhausted retries")  # pragma: no cover

  # ------------------------------------------------------------------
  # Tool dispatch
  # ------------------------------------------------------------------

  def _tool_context(self, call: ToolCall) -> RunContext:
    return RunContext(
      deps=self.context.deps_view(),
      run_id=self.run_id,
      session_id=self.context.session_id,
      agent_name=self.agent.name,
      iteration=self._iteration,
      usage=self.context.usage.copy(),
      tool_call_id=call.id,
      cancellation_token=self.cancellation_token,
    )

  async def _run_tools(self, calls: List[ToolCall]) -> List[ToolResult]:
    assert self._executor is not None
    results = await self._executor.execute_batch(calls, self._tool_context)
    self.context.usage.record_tool_calls(len(results))

    updates = []
    for result in results:
      updates.append(await self.plugins.on_tool_result(self.context, result))
      self.context.add_message(result.to_message())
    self.context.apply_updates(updates)
    self._transition(RunState.ITERATING)
    return results
