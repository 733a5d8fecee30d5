"""Anthropic Messages API wire format."""

import json
from typing import Any, Dict, List, Optional, Sequence

from agentrun.exceptions import ProtocolError
from agentrun.model.message import ImagePart, Message, TextPart, ToolCall
from agentrun.model.usage import Usage
from agentrun.provider.base import ModelResponse, ProviderAdapter, WireRequest, decode_arguments, is_stream_done, tool_schema
from agentrun.provider.events import Error, Finish, StreamEvent, TextDelta, ThinkingDelta, ToolCallComplete, ToolCallDelta, UsageUpdate

DEFAULT_MAX_TOKENS = 4096


def parse_usage(data: Optional[Dict[str, Any]], requests: int = 1) -> Usage:
  if not data:
    return Usage(requests=requests)
  return Usage(
    requests=requests,
    input_tokens=data.get("input_tokens") or 0,
    output_tokens=data.get("output_tokens") or 0,
  )


class AnthropicAdapter(ProviderAdapter):
  """System prompts go to the top-level ``system`` field; tool results ride in user turns."""

  name = "anthropic"

  # --- Requests ---

  def to_wire(
    self,
    messages: Sequence[Message],
    tools: Optional[Sequence[Any]] = None,
    settings: Optional[Dict[str, Any]] = None,
  ) -> WireRequest:
    system_chunks = [m.text for m in messages if m.role == "system" and m.text]
    wire_messages: List[Dict[str, Any]] = []
    for message in messages:
      if message.role == "system":
        continue
      if message.role == "tool":
        block = {
          "type": "tool_result",
          "tool_use_id": message.tool_call_id,
          "content": message.text,
        }
        if message.is_error:
          block["is_error"] = True
        # Consecutive tool results share one user turn
        previous = wire_messages[-1] if wire_messages else None
        if previous and previous["role"] == "user" and previous.get("_tool_results"):
          previous["content"].append(block)
        else:
          wire_messages.append({"role": "user", "content": [block], "_tool_results": True})
        continue
      wire_messages.append(self._message_to_wire(message))

    for wire in wire_messages:
      wire.pop("_tool_results", None)

    body: Dict[str, Any] = {"messages": wire_messages, "max_tokens": DEFAULT_MAX_TOKENS}
    if system_chunks:
      body["system"] = "\n\n".join(system_chunks)
    if tools:
      body["tools"] = self.tools_to_wire(tools)
    for key, value in (settings or {}).items():
      if value is not None:
        body[key] = value
    return WireRequest(provider=self.name, body=body)

  def tools_to_wire(self, tools: Sequence[Any]) -> List[Dict[str, Any]]:
    wire = []
    for t in tools:
      schema = tool_schema(t)
      wire.append({"name": schema["name"], "description": schema["description"], "input_schema": schema["parameters"]})
    return wire

  def _message_to_wire(self, message: Message) -> Dict[str, Any]:
    if message.role == "user":
      if isinstance(message.content, list):
        return {"role": "user", "content": [self._part_to_wire(p) for p in message.content]}
      return {"role": "user", "content": message.content or ""}

    blocks: List[Dict[str, Any]] = []
    if message.text:
      blocks.append({"type": "text", "text": message.text})
    for call in message.tool_calls:
      blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments})
    return {"role": "assistant", "content": blocks}

  def _part_to_wire(self, part: Any) -> Dict[str, Any]:
    if isinstance(part, ImagePart):
      if part.is_inline:
        return {"type": "image", "source": {"type": "base64", "media_type": part.media_type, "data": part.data}}
      return {"type": "image", "source": {"type": "url", "url": part.url}}
    return {"type": "text", "text": part.text}

  # --- Responses ---

  def from_wire(self, payload: Any) -> ModelResponse:
    data = self._require_mapping(payload)
    if data.get("type") == "error":
      raise ProtocolError(f"anthropic returned an error payload: {data.get('error')}", raw=data, provider=self.name)
    content = data.get("content")
    if not isinstance(content, list):
      raise ProtocolError("anthropic response has no content blocks", raw=data, provider=self.name)

    texts: List[str] = []
    thinking: List[str] = []
    calls: List[ToolCall] = []
    for block in content:
      kind = block.get("type")
      if kind == "text":
        texts.append(block.get("text", ""))
      elif kind == "thinking":
        thinking.append(block.get("thinking", ""))
      elif kind == "tool_use":
        calls.append(self._parse_tool_use(block))

    message = Message.assistant(
      content="".join(texts) or None,
      tool_calls=calls,
      reasoning="".join(thinking) or None,
      metadata={"model": data.get("model")} if data.get("model") else {},
    )
    return ModelResponse(
      message=message,
      usage=parse_usage(data.get("usage")),
      finish_reason=data.get("stop_reason"),
      model=data.get("model"),
    )

  def _parse_tool_use(self, block: Dict[str, Any]) -> ToolCall:
    if not block.get("id") or not block.get("name"):
      raise ProtocolError("anthropic tool_use block is missing id or name", raw=block, provider=self.name)
    return ToolCall(id=block["id"], name=block["name"], arguments=decode_arguments(block.get("input")))

  def from_wire_messages(self, request: WireRequest) -> List[Message]:
    messages: List[Message] = []
    system = request.body.get("system")
    if isinstance(system, list):
      system = "\n\n".join(b.get("text", "") for b in system)
    if system:
      messages.append(Message.system(system))

    tool_names: Dict[str, str] = {}
    for item in request.body.get("messages", []):
      role = item.get("role")
      content = item.get("content")
      if isinstance(content, str):
        messages.append(Message(role=role, content=content))
        continue

      if role == "assistant":
        text = "".join(b.get("text", "") for b in content if b.get("type") == "text")
        calls = [self._parse_tool_use(b) for b in content if b.get("type") == "tool_use"]
        for call in calls:
          tool_names[call.id] = call.name
        messages.append(Message.assistant(text or None, tool_calls=calls))
        continue

      parts: List[Any] = []
      for block in content:
        kind = block.get("type")
        if kind == "tool_result":
          call_id = block.get("tool_use_id") or ""
          messages.append(
            Message.tool_result(
              call_id,
              self._tool_result_text(block.get("content")),
              name=tool_names.get(call_id),
              is_error=bool(block.get("is_error")),
            )
          )
        elif kind == "image":
          source = block.get("source") or {}
          if source.get("type") == "base64":
            parts.append(ImagePart(data=source.get("data"), media_type=source.get("media_type")))
          else:
            parts.append(ImagePart(url=source.get("url")))
        elif kind == "text":
          parts.append(TextPart(text=block.get("text", "")))
      if parts:
        messages.append(Message.user(parts))
    return messages

  def _tool_result_text(self, content: Any) -> str:
    if isinstance(content, list):
      return "".join(b.get("text", "") for b in content if isinstance(b, dict))
    if isinstance(content, (dict, list)):
      return json.dumps(content)
    return "" if content is None else str(content)

  # --- Streaming ---

  def from_stream_event(self, frame: Any) -> List[StreamEvent]:
    if is_stream_done(frame):
      return [Finish(reason="end_turn")]
    if isinstance(frame, str):
      text = frame.strip()
      if not text or text.startswith("event:") or text.startswith(":"):
        return []
      if text.startswith("data:"):
        text = text[len("data:") :].strip()
      frame = text
    chunk = self._require_mapping(frame, what="stream event")
    kind = chunk.get("type")

    if kind == "error":
      error = chunk.get("error") or {}
      return [Error(cause=error.get("message", str(error)) if isinstance(error, dict) else str(error))]

    if kind == "message_start":
      usage = (chunk.get("message") or {}).get("usage")
      return [UsageUpdate(usage=parse_usage(usage))] if usage else []

    if kind == "content_block_start":
      block = chunk.get("content_block") or {}
      if block.get("type") == "tool_use":
        return [ToolCallDelta(index=chunk.get("index") or 0, id=block.get("id"), name=block.get("name"))]
      if block.get("type") == "text" and block.get("text"):
        return [TextDelta(text=block["text"])]
      return []

    if kind == "content_block_delta":
      delta = chunk.get("delta") or {}
      delta_type = delta.get("type")
      if delta_type == "text_delta":
        return [TextDelta(text=delta.get("text", ""))]
      if delta_type == "thinking_delta":
        return [ThinkingDelta(text=delta.get("thinking", ""))]
      if delta_type == "input_json_delta":
        return [ToolCallDelta(index=chunk.get("index") or 0, arguments=delta.get("partial_json", ""))]
      return []

    if kind == "message_delta":
      events: List[StreamEvent] = []
      if chunk.get("usage"):
        events.append(UsageUpdate(usage=parse_usage(chunk["usage"], requests=0)))
      stop_reason = (chunk.get("delta") or {}).get("stop_reason")
      if stop_reason:
        events.append(Finish(reason=stop_reason))
      return events

    if kind == "message_stop":
      return [Finish(reason="end_turn")]

    # A complete, non-streamed message delivered on the stream
    if "content" in chunk and "role" in chunk:
      response = self.from_wire(chunk)
      events = []
      if response.message.reasoning:
        events.append(ThinkingDelta(text=response.message.reasoning))
      if response.message.text:
        events.append(TextDelta(text=response.message.text))
      events.extend(ToolCallComplete(tool_call=call) for call in response.message.tool_calls)
      events.append(UsageUpdate(usage=response.usage))
      events.append(Finish(reason=response.finish_reason or "end_turn"))
      return events

    return []
