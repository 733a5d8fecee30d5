from agentrun.model.message import ContentPart, ImagePart, Message, TextPart, ToolCall, content_to_text
from agentrun.model.usage import Usage

__all__ = [
  "ContentPart",
  "ImagePart",
  "Message",
  "TextPart",
  "ToolCall",
  "Usage",
  "content_to_text",
]
