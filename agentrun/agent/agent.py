"""Agent: model reference + tools + instructions + policy."""

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union
from uuid import uuid4

from agentrun.agent.cancellation import CancellationToken
from agentrun.agent.config import AgentConfig
from agentrun.agent.context import Context
from agentrun.agent.runner import AgentRunner
from agentrun.agent.sinks import EventDispatcher, QueueSink, TopicSink
from agentrun.agent.state import RunResult
from agentrun.model.message import Message
from agentrun.tool.function import ToolDefinition
from agentrun.tool.registry import ToolLike, as_definition
from agentrun.utils.log import log_debug


class Agent:
  """A configuration bundle; running it is what ``run`` does.

  Example::

      @tool
      def add(a: int, b: int) -> int:
          \"\"\"Add two numbers.\"\"\"
          return a + b

      agent = Agent("openai:gpt-4o-mini", instructions="You do arithmetic.", tools=[add])
      result = await agent.run("What is 2 + 3?")
      print(result.unwrap())

  ``model`` is a model instance (anything with ``ainvoke`` /
  ``ainvoke_stream``) or a ``"provider:model"`` string resolved on first use.
  """

  def __init__(
    self,
    model: Any,
    *,
    name: Optional[str] = None,
    instructions: Optional[str] = None,
    tools: Optional[Sequence[ToolLike]] = None,
    plugins: Optional[Sequence[Any]] = None,
    output_type: Any = None,
    config: Optional[AgentConfig] = None,
    approval_handler: Optional[Any] = None,
    deps: Optional[Dict[str, Any]] = None,
    model_kwargs: Optional[Dict[str, Any]] = None,
  ) -> None:
    self.model = model
    self.name = name or "agent"
    self.instructions = instructions
    self.tools: List[ToolDefinition] = [as_definition(t) for t in tools or []]
    self.plugins: List[Any] = list(plugins or [])
    self.output_type = output_type
    self.config = config or AgentConfig()
    self.approval_handler = approval_handler
    self.deps: Dict[str, Any] = dict(deps or {})
    self._model_kwargs = dict(model_kwargs or {})
    self._resolved: Optional[Any] = None

  def __repr__(self) -> str:
    return f"Agent(name={self.name!r}, model={self.model!r}, tools={[t.name for t in self.tools]})"

  @property
  def resolved_model(self) -> Any:
    if self._resolved is None:
      if isinstance(self.model, str):
        from agentrun.provider.utils import get_model

        self._resolved = get_model(self.model, **self._model_kwargs)
      else:
        self._resolved = self.model
    return self._resolved

  def new_context(self, session_id: Optional[str] = None, deps: Optional[Dict[str, Any]] = None, **live: Any) -> Context:
    return Context(
      deps={**self.deps, **(deps or {})},
      system_prompt=self.instructions,
      session_id=session_id,
      **live,
    )

  async def run(
    self,
    prompt: Optional[Union[str, Message, List[Any]]] = None,
    *,
    context: Optional[Context] = None,
    deps: Optional[Dict[str, Any]] = None,
    session_id: Optional[str] = None,
    cancellation_token: Optional[CancellationToken] = None,
    sinks: Optional[Sequence[Any]] = None,
    approval_handler: Optional[Any] = None,
    run_id: Optional[str] = None,
  ) -> RunResult:
    """Run the agent to a terminal state.

    Args:
        prompt: User input (text, content parts or a Message). Optional when
            continuing a context whose last turn still needs an answer.
        context: Context to continue. It is copied; the run never mutates
            the caller's object. The result carries the updated copy.
        deps: Dependencies merged over the context's.
        session_id: Session id for a fresh context (and event topics).
        cancellation_token: Token to stop the run cooperatively.
        sinks: Event sinks (CallbackSink, QueueSink, TopicSink or callables).
        approval_handler: Overrides the agent's approval handler for this run.

    Returns:
        RunResult with state Finished, Cancelled or Failed. Use
        ``result.unwrap()`` to get the output or raise the typed error.
    """
    if context is not None:
      ctx = context.copy()
      if deps:
        ctx.deps = {**ctx.deps, **deps}
      if session_id and not ctx.session_id:
        ctx.session_id = session_id
    else:
      ctx = self.new_context(session_id=session_id, deps=deps)

    if prompt is not None:
      ctx.add_message(prompt if isinstance(prompt, Message) else Message.user(prompt))

    dispatcher = EventDispatcher(sinks or [], drain_timeout=self.config.sink_drain_timeout)
    if ctx.pubsub is not None and ctx.session_id:
      dispatcher.add(TopicSink(ctx.pubsub, ctx.session_id))

    run_id = run_id or str(uuid4())
    log_debug(f"Agent '{self.name}' starting run {run_id}")
    runner = AgentRunner(
      self,
      ctx,
      run_id=run_id,
      cancellation_token=cancellation_token,
      dispatcher=dispatcher,
      approval_handler=approval_handler,
    )
    try:
      return await runner.run()
    finally:
      await dispatcher.aclose()

  def run_sync(self, prompt: Optional[Union[str, Message, List[Any]]] = None, **kwargs: Any) -> RunResult:
    """Blocking wrapper around ``run`` for scripts."""
    return asyncio.run(self.run(prompt, **kwargs))

  async def run_stream(
    self,
    prompt: Optional[Union[str, Message, List[Any]]] = None,
    **kwargs: Any,
  ) -> AsyncIterator[Any]:
    """Run the agent and yield its events as they happen.

    The last event is always one of RunCompleted, RunCancelled or RunFailed.
    Breaking out of the iteration cancels the run.
    """
    sink = QueueSink()
    sinks = [*(kwargs.pop("sinks", None) or []), sink]
    task = asyncio.create_task(self.run(prompt, sinks=sinks, **kwargs))
    task.add_done_callback(lambda _: sink.close())
    try:
      async for event in sink:
        yield event
      await task
    finally:
      if not task.done():
        task.cancel()
        try:
          await task
        except asyncio.CancelledError:
          pass
