"""JSON file-based ContextStore.

Human-readable storage for debugging and inspection. Each session is one
file:

  <base_dir>/
    <session_id>.json
"""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from agentrun.exceptions import SerializationError
from agentrun.utils.log import log_debug

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


class FileContextStore:
  """One JSON document per session under ``base_dir``.

  Args:
    base_dir: Root directory for context files. Defaults to ".agentrun".
  """

  def __init__(self, base_dir: str = ".agentrun") -> None:
    self.base_dir = Path(base_dir)

  def _path(self, session_id: str) -> Path:
    return self.base_dir / f"{_UNSAFE.sub('_', session_id)}.json"

  async def save(self, session_id: str, data: Dict[str, Any]) -> None:
    path = self._path(session_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    # Atomic replace
    tmp = path.with_suffix(".json.tmp")
    with open(tmp, "w", encoding="utf-8") as f:
      json.dump(data, f, ensure_ascii=False)
    tmp.replace(path)
    log_debug(f"FileContextStore wrote {path}", log_level=2)

  async def load(self, session_id: str) -> Optional[Dict[str, Any]]:
    path = self._path(session_id)
    if not path.exists():
      return None
    try:
      with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
    except json.JSONDecodeError as e:
      raise SerializationError(f"Context file {path} is not valid JSON: {e}") from e

  async def delete(self, session_id: str) -> bool:
    path = self._path(session_id)
    if not path.exists():
      return False
    path.unlink()
    return True

  async def list_sessions(self) -> List[str]:
    if not self.base_dir.exists():
      return []
    sessions = []
    for path in sorted(self.base_dir.glob("*.json")):
      try:
        with open(path, "r", encoding="utf-8") as f:
          data = json.load(f)
      except json.JSONDecodeError:
        continue
      sessions.append(data.get("session_id") or path.stem)
    return sessions
