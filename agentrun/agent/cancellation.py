"""Cooperative cancellation for agent runs."""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional

from agentrun.exceptions import ExecutionCancelled


@dataclass
class CancellationToken:
  """Cooperative cancellation token for agent runs.

  Create a token, pass it to ``agent.run(cancellation_token=token)``,
  and call ``token.cancel()`` from any coroutine or thread to stop the run.

  The runner checks ``raise_if_cancelled()`` at safe points (the top of each
  iteration and after each model call) and raises ``ExecutionCancelled``.
  Work already in flight (a model request, a tool batch) finishes first.
  Open-ended waits (approval decisions, child agents) race ``wait()`` so a
  cancelled run never hangs on them.
  """

  _cancelled: bool = False
  reason: Optional[str] = None
  _waiters: List[asyncio.Future] = field(default_factory=list, init=False, repr=False, compare=False)

  def cancel(self, reason: Optional[str] = None) -> None:
    """Request cancellation and wake every ``wait()`` caller."""
    if reason is not None and self.reason is None:
      self.reason = reason
    self._cancelled = True
    waiters, self._waiters = self._waiters, []
    for waiter in waiters:
      if waiter.done():
        continue
      loop = waiter.get_loop()
      if loop.is_closed():
        continue
      try:
        running = asyncio.get_running_loop()
      except RuntimeError:
        running = None
      if running is loop:
        waiter.set_result(None)
      else:
        loop.call_soon_threadsafe(_resolve, waiter)

  @property
  def is_cancelled(self) -> bool:
    return self._cancelled

  def raise_if_cancelled(self) -> None:
    """Raise ``ExecutionCancelled`` if cancellation was requested."""
    if self._cancelled:
      raise ExecutionCancelled(reason=self.reason)

  async def wait(self) -> None:
    """Return once cancellation has been requested."""
    if self._cancelled:
      return
    waiter = asyncio.get_running_loop().create_future()
    self._waiters.append(waiter)
    try:
      await waiter
    finally:
      if waiter in self._waiters:
        self._waiters.remove(waiter)


def _resolve(waiter: asyncio.Future) -> None:
  if not waiter.done():
    waiter.set_result(None)
