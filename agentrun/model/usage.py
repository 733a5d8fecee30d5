from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Union


@dataclass
class Usage:
  """Run-wide usage counters.

  Counters only ever grow. Use the ``record_*`` helpers (or ``+``) instead of
  assigning to the fields directly.
  """

  requests: int = 0
  input_tokens: int = 0
  output_tokens: int = 0
  tool_calls: int = 0
  iterations: int = 0

  @property
  def total_tokens(self) -> int:
    return self.input_tokens + self.output_tokens

  def _increment(self, **deltas: int) -> None:
    for name, delta in deltas.items():
      if delta < 0:
        raise ValueError(f"Usage counters are monotonic; got negative {name} delta {delta}")
    for name, delta in deltas.items():
      setattr(self, name, getattr(self, name) + delta)

  def record_request(self, input_tokens: int = 0, output_tokens: int = 0) -> None:
    self._increment(requests=1, input_tokens=input_tokens or 0, output_tokens=output_tokens or 0)

  def record_tool_calls(self, count: int) -> None:
    self._increment(tool_calls=count)

  def record_iteration(self) -> None:
    self._increment(iterations=1)

  def merge(self, other: Optional["Usage"]) -> None:
    """Accumulate another usage snapshot into this one in place."""
    if other is None:
      return
    self._increment(
      requests=other.requests,
      input_tokens=other.input_tokens,
      output_tokens=other.output_tokens,
      tool_calls=other.tool_calls,
      iterations=other.iterations,
    )

  def copy(self) -> "Usage":
    return Usage(**asdict(self))

  def __add__(self, other: "Usage") -> "Usage":
    result = self.copy()
    result.merge(other)
    return result

  def __radd__(self, other: Union[int, "Usage"]) -> "Usage":
    # Lets sum() start from 0
    if other == 0:
      return self.copy()
    return self.__add__(other)  # type: ignore[arg-type]

  def to_dict(self) -> Dict[str, int]:
    data = asdict(self)
    data["total_tokens"] = self.total_tokens
    return data

  @classmethod
  def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Usage":
    if not data:
      return cls()
    return cls(
      requests=int(data.get("requests", 0)),
      input_tokens=int(data.get("input_tokens", 0)),
      output_tokens=int(data.get("output_tokens", 0)),
      tool_calls=int(data.get("tool_calls", 0)),
      iterations=int(data.get("iterations", 0)),
    )
