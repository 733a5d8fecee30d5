"""ContextStore protocol and helpers that move Contexts in and out of a store."""

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from agentrun.agent.context import Context
from agentrun.exceptions import NotFoundError
from agentrun.utils.log import log_debug, log_info


@runtime_checkable
class ContextStore(Protocol):
  """Protocol for context persistence backends.

  Stores hold serialized context envelopes (plain JSON-compatible dicts)
  keyed by session id. ``load`` returns None for unknown sessions.
  """

  async def save(self, session_id: str, data: Dict[str, Any]) -> None: ...

  async def load(self, session_id: str) -> Optional[Dict[str, Any]]: ...

  async def delete(self, session_id: str) -> bool: ...

  async def list_sessions(self) -> List[str]: ...


async def save_context(store: ContextStore, context: Context, session_id: Optional[str] = None) -> str:
  session_id = session_id or context.session_id
  if not session_id:
    raise ValueError("save_context needs a session_id (argument or context.session_id)")
  await store.save(session_id, context.to_dict())
  log_debug(f"Saved context for session '{session_id}' ({len(context.messages)} messages)", log_level=2)
  return session_id


async def load_context(store: ContextStore, session_id: str, **live: Any) -> Context:
  """Load a persisted context and repair dangling tool calls.

  Raises:
      NotFoundError: No context is stored for ``session_id``.
      SerializationError: The stored envelope is unreadable or has an
          unsupported version.
  """
  data = await store.load(session_id)
  if data is None:
    raise NotFoundError(f"No saved context for session '{session_id}'")
  context = Context.from_dict(data, **live)
  if not context.session_id:
    context.session_id = session_id
  repaired = context.repair_dangling()
  if repaired:
    log_info(f"Repaired {repaired} dangling tool call(s) in session '{session_id}'")
  return context
