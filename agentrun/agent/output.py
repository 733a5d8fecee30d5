"""Structured output: schema instructions, parsing and retry feedback."""

import json
import re
from typing import Any, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from agentrun.exceptions import ValidationError
from agentrun.model.message import Message

_FENCE = re.compile(r"^\s*```(?:json|JSON)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def is_structured(output_type: Any) -> bool:
  return output_type is not None and output_type is not str


def output_schema(output_type: Any) -> dict:
  return TypeAdapter(output_type).json_schema()


def output_instructions(output_type: Any) -> str:
  schema = json.dumps(output_schema(output_type), indent=2)
  return (
    "When you give your final answer, respond with a single JSON value that matches this JSON schema, "
    "with no surrounding prose:\n"
    f"{schema}"
  )


def strip_code_fences(text: str) -> str:
  match = _FENCE.match(text)
  return match.group(1).strip() if match else text.strip()


def parse_output(output_type: Any, text: Optional[str]) -> Any:
  """Parse and validate final assistant text against ``output_type``."""
  if not is_structured(output_type):
    return text or ""
  cleaned = strip_code_fences(text or "")
  try:
    return TypeAdapter(output_type).validate_json(cleaned)
  except PydanticValidationError as e:
    errors = [f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in e.errors()]
    raise ValidationError("Output does not match the required schema: " + "; ".join(errors), errors=errors) from e


def feedback_message(error: ValidationError) -> Message:
  details = "\n".join(f"- {e}" for e in error.errors) or f"- {error.message}"
  return Message.user(
    "Your previous response did not match the required output schema:\n"
    f"{details}\n"
    "Respond again with only a JSON value that matches the schema.",
    metadata={"output_feedback": True},
  )
