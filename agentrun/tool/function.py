"""ToolDefinition and the ``@tool`` decorator."""

import asyncio
import inspect
import re
from typing import Any, Callable, Dict, Optional, Union, get_type_hints

from pydantic import BaseModel, ConfigDict, Field, create_model, field_validator

from agentrun.tool.run_context import RunContext

_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")
_CONTEXT_PARAM_NAMES = ("ctx", "context", "run_context")


class ToolDefinition(BaseModel):
  """A callable the model may invoke, plus its execution policy.

  Definitions are frozen once built; use ``model_copy(update=...)`` (or
  ``with_approval``) to derive a variant.
  """

  model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

  name: str
  description: str = ""
  parameters: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
  handler: Optional[Callable[..., Any]] = Field(default=None, exclude=True)
  takes_context: bool = False

  # Execution policy
  requires_approval: bool = False
  max_retries: int = Field(default=1, ge=0)
  timeout: Optional[float] = Field(default=30.0, gt=0)

  @field_validator("name")
  @classmethod
  def _check_name(cls, value: str) -> str:
    if not _NAME_PATTERN.match(value):
      raise ValueError(f"Tool name must match {_NAME_PATTERN.pattern}, got {value!r}")
    return value

  def to_dict(self) -> Dict[str, Any]:
    return {"name": self.name, "description": self.description, "parameters": self.parameters}

  def with_approval(self, required: bool = True) -> "ToolDefinition":
    return self.model_copy(update={"requires_approval": required})

  async def invoke(self, context: RunContext, arguments: Dict[str, Any]) -> Any:
    """Call the handler. Sync handlers run in a worker thread."""
    if self.handler is None:
      raise RuntimeError(f"Tool '{self.name}' has no handler")
    args = (context,) if self.takes_context else ()
    if inspect.iscoroutinefunction(self.handler):
      return await self.handler(*args, **arguments)
    result = await asyncio.to_thread(self.handler, *args, **arguments)
    if inspect.isawaitable(result):
      return await result
    return result

  @classmethod
  def from_callable(
    cls,
    fn: Callable[..., Any],
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
    **policy: Any,
  ) -> "ToolDefinition":
    """Build a definition from a function signature.

    The JSON schema comes from the type hints via pydantic. A first parameter
    named ``ctx``/``context`` or annotated as ``RunContext`` receives the run
    context instead of a model-supplied argument.
    """
    signature = inspect.signature(fn)
    try:
      hints = get_type_hints(fn)
    except Exception:
      hints = {}

    params = list(signature.parameters.values())
    takes_context = False
    if params and (hints.get(params[0].name) is RunContext or params[0].name in _CONTEXT_PARAM_NAMES):
      takes_context = True
      params = params[1:]

    fields: Dict[str, Any] = {}
    for param in params:
      if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
        continue
      annotation = hints.get(param.name, Any)
      default = ... if param.default is inspect.Parameter.empty else param.default
      fields[param.name] = (annotation, default)

    args_model = create_model(f"{fn.__name__}_arguments", **fields)  # type: ignore[call-overload]
    return cls(
      name=name or fn.__name__,
      description=description if description is not None else _first_paragraph(inspect.getdoc(fn)),
      parameters=_clean_schema(args_model.model_json_schema()),
      handler=fn,
      takes_context=takes_context,
      **policy,
    )


def _first_paragraph(doc: Optional[str]) -> str:
  if not doc:
    return ""
  return doc.strip().split("\n\n")[0].replace("\n", " ").strip()


def _clean_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
  schema.pop("title", None)
  for prop in schema.get("properties", {}).values():
    if isinstance(prop, dict):
      prop.pop("title", None)
  schema.setdefault("properties", {})
  schema["type"] = "object"
  return schema


def tool(
  fn: Optional[Callable[..., Any]] = None,
  *,
  name: Optional[str] = None,
  description: Optional[str] = None,
  requires_approval: bool = False,
  max_retries: int = 1,
  timeout: Optional[float] = 30.0,
) -> Union[ToolDefinition, Callable[[Callable[..., Any]], ToolDefinition]]:
  """Turn a function into a ToolDefinition.

  Example::

      @tool
      def add(a: int, b: int) -> int:
          \"\"\"Add two integers.\"\"\"
          return a + b

      @tool(requires_approval=True, timeout=5)
      async def delete_file(ctx: RunContext, path: str) -> str: ...
  """

  def decorator(func: Callable[..., Any]) -> ToolDefinition:
    return ToolDefinition.from_callable(
      func,
      name=name,
      description=description,
      requires_approval=requires_approval,
      max_retries=max_retries,
      timeout=timeout,
    )

  if fn is not None:
    return decorator(fn)
  return decorator
