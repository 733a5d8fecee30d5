"""Session table: long-lived agent sessions with inactivity eviction."""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

from agentrun.agent.agent import Agent
from agentrun.agent.cancellation import CancellationToken
from agentrun.agent.context import Context
from agentrun.agent.state import RunResult, RunState
from agentrun.exceptions import NotFoundError, SessionExistsError
from agentrun.model.message import Message
from agentrun.persistence.base import ContextStore, load_context, save_context
from agentrun.pubsub.base import PubSub, agent_topic
from agentrun.utils.log import log_debug, log_error, log_info

DEFAULT_IDLE_TIMEOUT = 1800.0
DEFAULT_SWEEP_INTERVAL = 60.0


class AgentSession:
  """One conversation with an agent, kept across runs.

  Runs on the same session are serialized. Each finished run broadcasts an
  ``agent_response``, ``agent_cancelled`` or ``agent_error`` message on the
  session's agent topic (when a pubsub is configured).
  """

  def __init__(
    self,
    session_id: str,
    agent: Agent,
    *,
    context: Optional[Context] = None,
    pubsub: Optional[PubSub] = None,
    store: Optional[ContextStore] = None,
    clock: Callable[[], float] = time.monotonic,
  ) -> None:
    self.session_id = session_id
    self.agent = agent
    self.pubsub = pubsub
    self.store = store
    self._clock = clock
    self.context = context or agent.new_context(session_id=session_id)
    self.context.session_id = session_id
    if pubsub is not None:
      self.context.pubsub = pubsub
    self.last_active = clock()
    self._lock = asyncio.Lock()
    self._token: Optional[CancellationToken] = None

  @property
  def topic(self) -> str:
    return agent_topic(self.session_id)

  @property
  def is_running(self) -> bool:
    return self._token is not None

  @property
  def history(self) -> List[Message]:
    return list(self.context.messages)

  def touch(self) -> None:
    self.last_active = self._clock()

  def idle_for(self, now: Optional[float] = None) -> float:
    return (self._clock() if now is None else now) - self.last_active

  def _broadcast(self, payload: Dict[str, Any]) -> None:
    if self.pubsub is None:
      return
    self.pubsub.publish(self.topic, {"session_id": self.session_id, **payload})

  async def run(self, prompt: Any, **kwargs: Any) -> RunResult:
    """Run the agent on this session's history.

    ``session_id`` may be passed but must name this session. A caller-supplied
    ``cancellation_token`` replaces the session's own, so ``cancel()`` and the
    token both stop the run.
    """
    session_id = kwargs.pop("session_id", self.session_id)
    if session_id != self.session_id:
      raise ValueError(f"Session {self.session_id!r} cannot run with session_id={session_id!r}")
    token = kwargs.pop("cancellation_token", None)
    async with self._lock:
      self._token = token if token is not None else CancellationToken()
      self.touch()
      self._broadcast({"event": "agent_status", "status": "thinking"})
      try:
        result = await self.agent.run(
          prompt,
          context=self.context,
          session_id=self.session_id,
          cancellation_token=self._token,
          **kwargs,
        )
      finally:
        self._token = None
        self.touch()

      self.context = result.context
      if result.state == RunState.FINISHED:
        output = result.output.model_dump(mode="json") if hasattr(result.output, "model_dump") else result.output
        self._broadcast({"event": "agent_response", "output": output, "usage": result.usage.to_dict()})
      elif result.state == RunState.CANCELLED:
        self._broadcast({"event": "agent_cancelled", "reason": getattr(result.error, "reason", None) or "Execution cancelled"})
      else:
        self._broadcast({"event": "agent_error", "error_type": result.error.type, "message": str(result.error)})

      if self.store is not None:
        await self.save()
      return result

  def cancel(self, reason: str = "Execution cancelled by user") -> bool:
    """Cancel the in-flight run, if any. Returns whether one was running."""
    if self._token is None:
      return False
    self._token.cancel(reason)
    log_info(f"Session '{self.session_id}': cancellation requested")
    return True

  def clear_history(self) -> None:
    self.context.messages = []

  async def save(self) -> None:
    if self.store is None:
      raise ValueError(f"Session '{self.session_id}' has no store")
    await save_context(self.store, self.context, self.session_id)


class SessionTable:
  """Registry of live sessions keyed by session id.

  Sessions idle for longer than ``idle_timeout`` seconds are saved (when a
  store is configured) and evicted, either by calling ``evict_idle`` or by
  the background sweeper started with ``start()``.

  Example::

      table = SessionTable(store=InMemoryContextStore(), idle_timeout=600)
      table.start()
      session = await table.get_or_create("user-42", agent)
      result = await session.run("Hello")
      await table.stop()
  """

  def __init__(
    self,
    store: Optional[ContextStore] = None,
    *,
    pubsub: Optional[PubSub] = None,
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
    clock: Callable[[], float] = time.monotonic,
  ) -> None:
    self.store = store
    self.pubsub = pubsub
    self.idle_timeout = idle_timeout
    self.sweep_interval = sweep_interval
    self._clock = clock
    self._sessions: Dict[str, AgentSession] = {}
    self._sweeper: Optional[asyncio.Task] = None

  def __len__(self) -> int:
    return len(self._sessions)

  def __contains__(self, session_id: object) -> bool:
    return session_id in self._sessions

  @property
  def session_ids(self) -> List[str]:
    return list(self._sessions)

  # --- Registry operations ---

  async def create(self, session_id: str, agent: Agent, *, context: Optional[Context] = None, restore: bool = True) -> AgentSession:
    """Register a new session, restoring its saved context when one exists."""
    if session_id in self._sessions:
      raise SessionExistsError(session_id)
    if context is None and restore and self.store is not None:
      try:
        context = await load_context(self.store, session_id)
        log_debug(f"Restored session '{session_id}' with {len(context.messages)} messages")
      except NotFoundError:
        context = None
    session = AgentSession(session_id, agent, context=context, pubsub=self.pubsub, store=self.store, clock=self._clock)
    self._sessions[session_id] = session
    log_info(f"Session '{session_id}' created")
    return session

  def get(self, session_id: str) -> Optional[AgentSession]:
    return self._sessions.get(session_id)

  def lookup(self, session_id: str) -> AgentSession:
    session = self._sessions.get(session_id)
    if session is None:
      raise NotFoundError(f"Session '{session_id}' not found")
    return session

  async def get_or_create(self, session_id: str, agent: Agent) -> AgentSession:
    session = self._sessions.get(session_id)
    if session is not None:
      return session
    return await self.create(session_id, agent)

  async def terminate(self, session_id: str, save: bool = True) -> bool:
    """Remove a session, cancelling any in-flight run and saving its context."""
    session = self._sessions.pop(session_id, None)
    if session is None:
      return False
    session.cancel("Session terminated")
    if save and self.store is not None:
      await session.save()
    log_info(f"Session '{session_id}' terminated")
    return True

  async def evict_idle(self, now: Optional[float] = None) -> List[str]:
    """Terminate sessions idle for at least ``idle_timeout``. Running sessions are kept."""
    now = self._clock() if now is None else now
    idle = [sid for sid, s in self._sessions.items() if not s.is_running and s.idle_for(now) >= self.idle_timeout]
    for session_id in idle:
      log_debug(f"Evicting idle session '{session_id}'")
      await self.terminate(session_id)
    return idle

  # --- Background sweeper ---

  def start(self) -> None:
    if self._sweeper is None or self._sweeper.done():
      self._sweeper = asyncio.create_task(self._sweep_forever())

  async def stop(self) -> None:
    if self._sweeper is None:
      return
    self._sweeper.cancel()
    try:
      await self._sweeper
    except asyncio.CancelledError:
      pass
    self._sweeper = None

  async def _sweep_forever(self) -> None:
    while True:
      await asyncio.sleep(self.sweep_interval)
      try:
        evicted = await self.evict_idle()
        if evicted:
          log_info(f"Evicted {len(evicted)} idle session(s)")
      except Exception as e:
        log_error(f"Session sweep failed: {e}")
