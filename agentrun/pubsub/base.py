"""Notification boundary: topic-based publish/subscribe."""

from typing import Any, AsyncIterator, Optional, Protocol, runtime_checkable

TOPIC_PREFIX = "agentrun"


def agent_topic(session_id: str) -> str:
  return f"{TOPIC_PREFIX}:agent:{session_id}"


def approval_topic(session_id: str) -> str:
  return f"{TOPIC_PREFIX}:approval:{session_id}"


def approval_response_topic(session_id: str) -> str:
  return f"{TOPIC_PREFIX}:approval_response:{session_id}"


@runtime_checkable
class Subscription(Protocol):
  topic: str

  def __aiter__(self) -> AsyncIterator[Any]: ...

  async def get(self, timeout: Optional[float] = None) -> Any: ...

  def close(self) -> None: ...


@runtime_checkable
class PubSub(Protocol):
  """Best-effort fan-out. ``publish`` never blocks on slow subscribers."""

  def publish(self, topic: str, event: Any) -> int: ...

  def subscribe(self, topic: str) -> Subscription: ...
