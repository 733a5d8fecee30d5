"""Validate tool arguments against the tool's JSON schema.

The schema is compiled once into a strict pydantic model, so a string "5" is
rejected for an ``integer`` property rather than coerced.
"""

import json
from functools import lru_cache
from typing import Any, Dict, List, Literal, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr, create_model
from pydantic import ValidationError as PydanticValidationError

from agentrun.exceptions import SchemaError

_SCALARS: Dict[str, Any] = {
  "string": StrictStr,
  "integer": StrictInt,
  "number": Union[StrictInt, StrictFloat],
  "boolean": StrictBool,
  "null": type(None),
}


def _annotation(schema: Dict[str, Any], model_name: str, defs: Dict[str, Any], resolving: Tuple[str, ...] = ()) -> Any:
  ref = schema.get("$ref")
  if isinstance(ref, str):
    name = ref.rsplit("/", 1)[-1]
    # Recursive definitions are accepted as plain objects past the first level
    if name in resolving or name not in defs:
      return Any
    return _annotation(defs[name], f"{model_name}_{name}", defs, (*resolving, name))

  if "enum" in schema and schema["enum"]:
    return Literal[tuple(schema["enum"])]  # type: ignore[misc]
  if "const" in schema:
    return Literal[schema["const"]]  # type: ignore[misc]

  for key in ("anyOf", "oneOf"):
    if key in schema:
      options = tuple(_annotation(option, f"{model_name}_{i}", defs, resolving) for i, option in enumerate(schema[key]))
      return Union[options] if len(options) > 1 else options[0]  # type: ignore[return-value]

  kind = schema.get("type")
  if isinstance(kind, list):
    options = tuple(_annotation({**schema, "type": k}, model_name, defs, resolving) for k in kind)
    return Union[options] if len(options) > 1 else options[0]  # type: ignore[return-value]

  if kind in _SCALARS:
    return _SCALARS[kind]
  if kind == "array":
    items = schema.get("items")
    if isinstance(items, dict) and items:
      return List[_annotation(items, f"{model_name}_item", defs, resolving)]  # type: ignore[misc]
    return List[Any]
  if kind == "object":
    if schema.get("properties"):
      return _build_model(schema, model_name, defs, resolving)
    return Dict[str, Any]
  return Any


def _build_model(
  schema: Dict[str, Any],
  model_name: str,
  defs: Optional[Dict[str, Any]] = None,
  resolving: Tuple[str, ...] = (),
) -> Type[BaseModel]:
  if defs is None:
    defs = {**(schema.get("definitions") or {}), **(schema.get("$defs") or {})}
  required = set(schema.get("required") or [])
  extra = "forbid" if schema.get("additionalProperties") is False else "allow"

  # Property names can be anything in JSON, so fields are positional and aliased
  fields: Dict[str, Tuple[Any, Any]] = {}
  for i, (prop_name, prop_schema) in enumerate((schema.get("properties") or {}).items()):
    annotation = _annotation(prop_schema if isinstance(prop_schema, dict) else {}, f"{model_name}_{i}", defs, resolving)
    if prop_name in required:
      fields[f"f{i}"] = (annotation, Field(..., alias=prop_name))
    else:
      fields[f"f{i}"] = (Optional[annotation], Field(None, alias=prop_name))

  return create_model(model_name, __config__=ConfigDict(extra=extra), **fields)  # type: ignore[call-overload]


@lru_cache(maxsize=256)
def _compiled(schema_json: str) -> Type[BaseModel]:
  return _build_model(json.loads(schema_json), "ToolArguments")


def compile_schema(schema: Optional[Dict[str, Any]]) -> Type[BaseModel]:
  return _compiled(json.dumps(schema or {"type": "object", "properties": {}}, sort_keys=True))


def format_errors(error: PydanticValidationError) -> List[str]:
  messages = []
  for err in error.errors():
    location = ".".join(str(part) for part in err.get("loc", ()))
    messages.append(f"{location}: {err['msg']}" if location else err["msg"])
  return messages


def validate_arguments(tool_name: str, schema: Optional[Dict[str, Any]], arguments: Any) -> Dict[str, Any]:
  """Return ``arguments`` unchanged when valid, else raise SchemaError."""
  if not isinstance(arguments, dict):
    raise SchemaError(
      f"Invalid arguments for tool '{tool_name}': expected a JSON object, got {type(arguments).__name__}",
      tool_name=tool_name,
    )
  if set(arguments) == {"error", "raw"} and arguments.get("error") == "Invalid JSON arguments":
    raise SchemaError(
      f"Invalid arguments for tool '{tool_name}': arguments were not valid JSON: {arguments['raw']}",
      tool_name=tool_name,
      errors=["arguments were not valid JSON"],
    )

  try:
    compile_schema(schema).model_validate(arguments)
  except PydanticValidationError as e:
    errors = format_errors(e)
    raise SchemaError(f"Invalid arguments for tool '{tool_name}': {'; '.join(errors)}", tool_name=tool_name, errors=errors) from e
  return arguments
