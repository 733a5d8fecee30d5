"""Provider-agnostic conversation model.

``Message`` is what the runtime stores in a Context and what adapters translate
to and from each backend's wire schema. Content is either a plain string or a
list of ``TextPart`` / ``ImagePart`` for multimodal turns.
"""

import base64
import mimetypes
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

Role = Literal["system", "user", "assistant", "tool"]


class TextPart(BaseModel):
  type: Literal["text"] = "text"
  text: str


class ImagePart(BaseModel):
  """An image referenced by URL or carried inline as base64 data."""

  type: Literal["image"] = "image"
  url: Optional[str] = None
  data: Optional[str] = None
  media_type: Optional[str] = None

  @model_validator(mode="after")
  def _check_source(self) -> "ImagePart":
    if not self.url and not self.data:
      raise ValueError("ImagePart needs either a url or inline base64 data")
    if self.data and not self.media_type:
      self.media_type = "image/png"
    return self

  @property
  def is_inline(self) -> bool:
    return self.data is not None

  def data_url(self) -> str:
    """Return the image as a URL, building a ``data:`` URL for inline images."""
    if self.data is not None:
      return f"data:{self.media_type};base64,{self.data}"
    return self.url or ""

  @classmethod
  def from_data_url(cls, url: str) -> "ImagePart":
    """Parse ``data:<mime>;base64,<payload>`` into an inline part; other URLs are kept as-is."""
    if url.startswith("data:") and ";base64," in url:
      header, _, payload = url.partition(";base64,")
      return cls(data=payload, media_type=header[len("data:") :] or "image/png")
    return cls(url=url)

  @classmethod
  def from_file(cls, path: Union[str, Path], media_type: Optional[str] = None) -> "ImagePart":
    file_path = Path(path)
    if media_type is None:
      media_type, _ = mimetypes.guess_type(file_path.name)
    encoded = base64.b64encode(file_path.read_bytes()).decode("ascii")
    return cls(data=encoded, media_type=media_type or "application/octet-stream")


ContentPart = Annotated[Union[TextPart, ImagePart], Field(discriminator="type")]


class ToolCall(BaseModel):
  """A single tool invocation requested by the model."""

  id: str
  name: str
  arguments: Dict[str, Any] = Field(default_factory=dict)


def content_to_text(content: Union[str, List[Any], None]) -> str:
  """Flatten message content into text, rendering images as ``[Image: <url>]``."""
  if content is None:
    return ""
  if isinstance(content, str):
    return content
  chunks: List[str] = []
  for part in content:
    if isinstance(part, TextPart):
      chunks.append(part.text)
    elif isinstance(part, ImagePart):
      chunks.append(f"[Image: {part.url if part.url else part.media_type}]")
  return "\n".join(chunks)


class Message(BaseModel):
  """One turn in a conversation."""

  id: str = Field(default_factory=lambda: str(uuid4()))
  role: Role
  content: Optional[Union[str, List[ContentPart]]] = None

  # Assistant turns only
  tool_calls: List[ToolCall] = Field(default_factory=list)
  reasoning: Optional[str] = None

  # Tool results only
  tool_call_id: Optional[str] = None
  name: Optional[str] = None
  is_error: bool = False

  metadata: Dict[str, Any] = Field(default_factory=dict)

  @model_validator(mode="after")
  def _check_role_fields(self) -> "Message":
    if self.tool_calls and self.role != "assistant":
      raise ValueError(f"tool_calls are only allowed on assistant messages, not {self.role}")
    if self.role == "tool" and not self.tool_call_id:
      raise ValueError("tool messages require a tool_call_id")
    return self

  # --- Constructors ---

  @classmethod
  def system(cls, content: str, **kwargs: Any) -> "Message":
    return cls(role="system", content=content, **kwargs)

  @classmethod
  def user(cls, content: Union[str, List[Any]], **kwargs: Any) -> "Message":
    return cls(role="user", content=content, **kwargs)

  @classmethod
  def assistant(
    cls,
    content: Optional[Union[str, List[Any]]] = None,
    tool_calls: Optional[List[ToolCall]] = None,
    **kwargs: Any,
  ) -> "Message":
    return cls(role="assistant", content=content, tool_calls=tool_calls or [], **kwargs)

  @classmethod
  def tool_result(
    cls,
    tool_call_id: str,
    content: str,
    name: Optional[str] = None,
    is_error: bool = False,
    **kwargs: Any,
  ) -> "Message":
    return cls(role="tool", content=content, tool_call_id=tool_call_id, name=name, is_error=is_error, **kwargs)

  # --- Helpers ---

  @property
  def text(self) -> str:
    """Text content only; image parts are skipped."""
    if self.content is None:
      return ""
    if isinstance(self.content, str):
      return self.content
    return "".join(part.text for part in self.content if isinstance(part, TextPart))

  @property
  def has_tool_calls(self) -> bool:
    return bool(self.tool_calls)

  @property
  def parts(self) -> List[Union[TextPart, ImagePart]]:
    """Content as a part list regardless of how it was stored."""
    if self.content is None or self.content == "":
      return []
    if isinstance(self.content, str):
      return [TextPart(text=self.content)]
    return list(self.content)

  def to_dict(self) -> Dict[str, Any]:
    return self.model_dump(mode="json", exclude_none=True)

  @classmethod
  def from_dict(cls, data: Dict[str, Any]) -> "Message":
    return cls.model_validate(data)
