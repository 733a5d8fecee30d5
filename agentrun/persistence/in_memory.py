"""In-memory ContextStore."""

from copy import deepcopy
from typing import Any, Dict, List, Optional


class InMemoryContextStore:
  """Context store backed by a plain dict.

  Useful for testing, development, and short-lived processes that do not
  require persistence. All data is lost when the process exits.
  """

  def __init__(self) -> None:
    self._data: Dict[str, Dict[str, Any]] = {}

  async def save(self, session_id: str, data: Dict[str, Any]) -> None:
    self._data[session_id] = deepcopy(data)

  async def load(self, session_id: str) -> Optional[Dict[str, Any]]:
    data = self._data.get(session_id)
    return deepcopy(data) if data is not None else None

  async def delete(self, session_id: str) -> bool:
    return self._data.pop(session_id, None) is not None

  async def list_sessions(self) -> List[str]:
    return sorted(self._data)
