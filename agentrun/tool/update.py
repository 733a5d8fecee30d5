"""Patches a tool hands back to change the run's dependencies."""

from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

Operation = Literal["set", "merge", "append", "delete"]


def deep_merge(base: Dict[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
  merged = dict(base)
  for key, value in overlay.items():
    if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
      merged[key] = deep_merge(merged[key], value)
    else:
      merged[key] = deepcopy(value)
  return merged


@dataclass
class ContextUpdate:
  """An ordered list of dependency operations.

  Example::

      update = ContextUpdate().set("user", "ada").append("history", "login").delete("token")
      return result, update
  """

  operations: List[Tuple[Operation, str, Any]] = field(default_factory=list)

  def set(self, key: str, value: Any) -> "ContextUpdate":
    self.operations.append(("set", key, value))
    return self

  def merge(self, key: str, value: Mapping[str, Any]) -> "ContextUpdate":
    if not isinstance(value, Mapping):
      raise TypeError(f"merge expects a mapping for '{key}', got {type(value).__name__}")
    self.operations.append(("merge", key, value))
    return self

  def append(self, key: str, item: Any) -> "ContextUpdate":
    self.operations.append(("append", key, item))
    return self

  def delete(self, key: str) -> "ContextUpdate":
    self.operations.append(("delete", key, None))
    return self

  @property
  def is_empty(self) -> bool:
    return not self.operations

  @property
  def keys(self) -> List[str]:
    return [key for _, key, _ in self.operations]

  def apply(self, deps: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Return a new dependency dict with every operation applied in order.

    ``append`` on a missing key starts a list; on a non-list value it wraps
    the existing value. ``merge`` on a missing or non-dict value replaces it.
    """
    result: Dict[str, Any] = dict(deps or {})
    for op, key, value in self.operations:
      if op == "set":
        result[key] = deepcopy(value)
      elif op == "merge":
        current = result.get(key)
        result[key] = deep_merge(current, value) if isinstance(current, dict) else deepcopy(dict(value))
      elif op == "append":
        current = result.get(key)
        if current is None:
          result[key] = [deepcopy(value)]
        elif isinstance(current, list):
          result[key] = [*current, deepcopy(value)]
        else:
          result[key] = [current, deepcopy(value)]
      elif op == "delete":
        result.pop(key, None)
    return result

  @classmethod
  def from_dict(cls, values: Mapping[str, Any]) -> "ContextUpdate":
    update = cls()
    for key, value in values.items():
      update.set(key, value)
    return update

  def __add__(self, other: "ContextUpdate") -> "ContextUpdate":
    return ContextUpdate(operations=[*self.operations, *other.operations])
