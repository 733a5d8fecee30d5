"""Event sinks and the dispatcher that fans run events out to them."""

import asyncio
import inspect
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from agentrun.events import TERMINAL_EVENTS
from agentrun.pubsub.base import PubSub, agent_topic
from agentrun.utils.log import log_debug, log_warning

_CLOSED = object()


@runtime_checkable
class EventSink(Protocol):
  async def send(self, event: Any) -> None: ...


class CallbackSink:
  """User-registerable event callbacks.

  Example::

      sink = CallbackSink()

      @sink.on(ToolCallStart)
      def log_tool(event):
          print(f"Tool started: {event.tool_call.name}")

      await agent.run("hi", sinks=[sink])
  """

  def __init__(self, handlers: Optional[Dict[type, Callable]] = None) -> None:
    self._handlers: Dict[type, List[Callable]] = {}
    for event_type, handler in (handlers or {}).items():
      self.on(event_type, handler)

  def on(self, event_type: type, handler: Optional[Callable] = None) -> Callable:
    """Register a handler for *event_type*; usable as a decorator."""
    if handler is not None:
      self._handlers.setdefault(event_type, []).append(handler)
      return handler

    def decorator(fn: Callable) -> Callable:
      self._handlers.setdefault(event_type, []).append(fn)
      return fn

    return decorator

  def off(self, event_type: type, handler: Callable) -> None:
    handlers = self._handlers.get(event_type, [])
    if handler in handlers:
      handlers.remove(handler)

  async def send(self, event: Any) -> None:
    """Dispatch *event* to all matching handlers. Errors are logged, never raised."""
    for event_type, handlers in self._handlers.items():
      if isinstance(event, event_type):
        for handler in list(handlers):
          try:
            result = handler(event)
            if inspect.isawaitable(result):
              await result
          except Exception as exc:
            log_warning(f"Event handler error for {event_type.__name__}: {exc}")


class QueueSink:
  """Channel sink: events land on an ``asyncio.Queue`` the caller consumes.

  Iterating the sink stops after it is closed (the dispatcher closes it when
  the run ends).
  """

  def __init__(self, maxsize: int = 0) -> None:
    self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
    self._closed = False

  async def send(self, event: Any) -> None:
    await self.queue.put(event)

  def close(self) -> None:
    if not self._closed:
      self._closed = True
      self.queue.put_nowait(_CLOSED)

  async def aclose(self) -> None:
    self.close()

  async def __aiter__(self) -> AsyncIterator[Any]:
    while True:
      event = await self.queue.get()
      if event is _CLOSED:
        return
      yield event


class TopicSink:
  """Broadcasts ``event.to_dict()`` on the session's agent topic."""

  def __init__(self, pubsub: PubSub, session_id: str, topic: Optional[str] = None) -> None:
    self.pubsub = pubsub
    self.session_id = session_id
    self.topic = topic or agent_topic(session_id)

  async def send(self, event: Any) -> None:
    payload = event.to_dict() if hasattr(event, "to_dict") else event
    self.pubsub.publish(self.topic, payload)


def as_sink(sink: Any) -> EventSink:
  """Accept sink objects and bare callables (which receive every event)."""
  if hasattr(sink, "send"):
    return sink
  if callable(sink):
    return CallbackSink({object: sink})
  raise TypeError(f"Cannot use {sink!r} as an event sink")


class EventDispatcher:
  """Fans events out to sinks, one queue and worker task per sink.

  ``emit`` never blocks: each sink drains its own queue in order, so a slow
  or failing sink cannot hold up the run or the other sinks.
  """

  def __init__(self, sinks: Sequence[Any] = (), drain_timeout: float = 5.0) -> None:
    self.sinks: List[EventSink] = [as_sink(s) for s in sinks]
    self.drain_timeout = drain_timeout
    self._queues: List[asyncio.Queue] = []
    self._workers: List[asyncio.Task] = []
    self._started = False
    self._closed = False

  def start(self) -> None:
    if self._started:
      return
    self._started = True
    for sink in self.sinks:
      queue: asyncio.Queue = asyncio.Queue()
      self._queues.append(queue)
      self._workers.append(asyncio.create_task(self._drain(sink, queue)))

  def add(self, sink: Any) -> None:
    resolved = as_sink(sink)
    self.sinks.append(resolved)
    if self._started:
      queue: asyncio.Queue = asyncio.Queue()
      self._queues.append(queue)
      self._workers.append(asyncio.create_task(self._drain(resolved, queue)))

  def emit(self, event: Any) -> None:
    if self._closed:
      return
    if not self._started:
      self.start()
    for queue in self._queues:
      queue.put_nowait(event)
    if isinstance(event, TERMINAL_EVENTS):
      log_debug(f"Terminal event {event.event} emitted", log_level=2)

  async def _drain(self, sink: EventSink, queue: asyncio.Queue) -> None:
    while True:
      event = await queue.get()
      if event is _CLOSED:
        break
      try:
        await sink.send(event)
      except Exception as exc:
        log_warning(f"Event sink {type(sink).__name__} failed: {exc}")
    closer = getattr(sink, "aclose", None)
    if closer is not None:
      try:
        await closer()
      except Exception as exc:
        log_warning(f"Event sink {type(sink).__name__} failed to close: {exc}")

  async def aclose(self) -> None:
    """Flush queued events, waiting at most ``drain_timeout`` seconds."""
    if self._closed:
      return
    self._closed = True
    if not self._workers:
      for sink in self.sinks:
        closer = getattr(sink, "aclose", None)
        if closer is not None:
          await closer()
      return
    for queue in self._queues:
      queue.put_nowait(_CLOSED)
    _, pending = await asyncio.wait(self._workers, timeout=self.drain_timeout)
    for task in pending:
      log_warning(f"Event sink did not drain within {self.drain_timeout}s; dropping remaining events")
      task.cancel()
    for sink in self.sinks:
      # Sinks whose worker was cancelled still need their close signal
      if isinstance(sink, QueueSink):
        sink.close()
