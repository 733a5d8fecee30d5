"""In-process PubSub backed by one bounded asyncio.Queue per subscriber."""

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional

from agentrun.utils.log import log_debug, log_warning


class QueueSubscription:
  """A subscriber's view of one topic. Iterate it or call ``get``."""

  def __init__(self, pubsub: "InMemoryPubSub", topic: str, maxsize: int) -> None:
    self.topic = topic
    self._pubsub = pubsub
    self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
    self._closed = False

  def deliver(self, event: Any) -> bool:
    if self._closed:
      return False
    try:
      self._queue.put_nowait(event)
    except asyncio.QueueFull:
      log_warning(f"PubSub subscriber on '{self.topic}' is full; dropping event")
      return False
    return True

  async def get(self, timeout: Optional[float] = None) -> Any:
    if timeout is None:
      return await self._queue.get()
    return await asyncio.wait_for(self._queue.get(), timeout)

  async def __aiter__(self) -> AsyncIterator[Any]:
    while not self._closed:
      yield await self._queue.get()

  def close(self) -> None:
    if not self._closed:
      self._closed = True
      self._pubsub._remove(self)

  def __enter__(self) -> "QueueSubscription":
    return self

  def __exit__(self, *exc: Any) -> None:
    self.close()


class InMemoryPubSub:
  """Topic registry for a single process.

  Useful for tests, development, and single-node deployments. Delivery is
  best-effort: a full subscriber queue drops the event for that subscriber
  only.
  """

  def __init__(self, maxsize: int = 1000) -> None:
    self.maxsize = maxsize
    self._subscribers: Dict[str, List[QueueSubscription]] = {}

  def subscribe(self, topic: str) -> QueueSubscription:
    subscription = QueueSubscription(self, topic, self.maxsize)
    self._subscribers.setdefault(topic, []).append(subscription)
    log_debug(f"Subscribed to '{topic}'", log_level=2)
    return subscription

  def publish(self, topic: str, event: Any) -> int:
    delivered = 0
    for subscription in list(self._subscribers.get(topic, [])):
      if subscription.deliver(event):
        delivered += 1
    return delivered

  def subscriber_count(self, topic: str) -> int:
    return len(self._subscribers.get(topic, []))

  def _remove(self, subscription: QueueSubscription) -> None:
    subscribers = self._subscribers.get(subscription.topic, [])
    if subscription in subscribers:
      subscribers.remove(subscription)
    if not subscribers:
      self._subscribers.pop(subscription.topic, None)
