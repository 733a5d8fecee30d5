"""OpenAI chat-completions wire format.

Also used by every OpenAI-compatible backend (Groq, Mistral, Ollama, LM Studio,
OpenRouter, Together, vLLM, SGLang).
"""

import json
from typing import Any, Dict, List, Optional, Sequence

from agentrun.exceptions import ProtocolError
from agentrun.model.message import ImagePart, Message, TextPart, ToolCall
from agentrun.model.usage import Usage
from agentrun.provider.base import (
  ModelResponse,
  ProviderAdapter,
  WireRequest,
  decode_arguments,
  is_stream_done,
  synthesize_call_id,
  tool_schema,
)
from agentrun.provider.events import Error, Finish, StreamEvent, TextDelta, ThinkingDelta, ToolCallComplete, ToolCallDelta, UsageUpdate


def _as_dict(payload: Any) -> Any:
  # openai SDK objects are pydantic models
  if hasattr(payload, "model_dump"):
    return payload.model_dump()
  return payload


def parse_usage(data: Optional[Dict[str, Any]]) -> Usage:
  if not data:
    return Usage(requests=1)
  return Usage(
    requests=1,
    input_tokens=data.get("prompt_tokens") or 0,
    output_tokens=data.get("completion_tokens") or 0,
  )


class OpenAIAdapter(ProviderAdapter):
  name = "openai"

  # --- Requests ---

  def to_wire(
    self,
    messages: Sequence[Message],
    tools: Optional[Sequence[Any]] = None,
    settings: Optional[Dict[str, Any]] = None,
  ) -> WireRequest:
    body: Dict[str, Any] = {"messages": [self._message_to_wire(m) for m in messages]}
    if tools:
      body["tools"] = self.tools_to_wire(tools)
    for key, value in (settings or {}).items():
      if value is not None:
        body[key] = value
    return WireRequest(provider=self.name, body=body)

  def tools_to_wire(self, tools: Sequence[Any]) -> List[Dict[str, Any]]:
    return [{"type": "function", "function": tool_schema(t)} for t in tools]

  def _message_to_wire(self, message: Message) -> Dict[str, Any]:
    if message.role == "system":
      return {"role": "system", "content": message.text}

    if message.role == "user":
      if isinstance(message.content, list):
        return {"role": "user", "content": [self._part_to_wire(p) for p in message.content]}
      return {"role": "user", "content": message.content or ""}

    if message.role == "assistant":
      wire: Dict[str, Any] = {"role": "assistant", "content": message.text or ("" if not message.tool_calls else None)}
      if message.tool_calls:
        wire["tool_calls"] = [
          {
            "id": call.id,
            "type": "function",
            "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
          }
          for call in message.tool_calls
        ]
      return wire

    return {"role": "tool", "content": message.text, "tool_call_id": message.tool_call_id}

  def _part_to_wire(self, part: Any) -> Dict[str, Any]:
    if isinstance(part, ImagePart):
      return {"type": "image_url", "image_url": {"url": part.data_url()}}
    return {"type": "text", "text": part.text}

  # --- Responses ---

  def from_wire(self, payload: Any) -> ModelResponse:
    data = self._require_mapping(_as_dict(payload))
    if "error" in data and "choices" not in data:
      raise ProtocolError(f"openai returned an error payload: {data['error']}", raw=data, provider=self.name)
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
      raise ProtocolError("openai response has no choices", raw=data, provider=self.name)
    message_data = choices[0].get("message")
    if not isinstance(message_data, dict):
      raise ProtocolError("openai response choice has no message", raw=data, provider=self.name)

    message = Message.assistant(
      content=self._content_text(message_data.get("content")) or None,
      tool_calls=[self._parse_tool_call(tc) for tc in message_data.get("tool_calls") or []],
      reasoning=message_data.get("reasoning_content") or message_data.get("reasoning"),
      metadata={"model": data.get("model")} if data.get("model") else {},
    )
    return ModelResponse(
      message=message,
      usage=parse_usage(data.get("usage")),
      finish_reason=choices[0].get("finish_reason"),
      model=data.get("model"),
    )

  def _content_text(self, content: Any) -> str:
    if content is None:
      return ""
    if isinstance(content, list):
      return "".join(p.get("text", "") for p in content if isinstance(p, dict))
    return str(content)

  def _parse_tool_call(self, data: Dict[str, Any]) -> ToolCall:
    func = data.get("function") or {}
    if not func.get("name"):
      raise ProtocolError("openai tool call is missing a function name", raw=data, provider=self.name)
    return ToolCall(
      id=data.get("id") or synthesize_call_id(),
      name=func["name"],
      arguments=decode_arguments(func.get("arguments")),
    )

  def from_wire_messages(self, request: WireRequest) -> List[Message]:
    messages: List[Message] = []
    tool_names: Dict[str, str] = {}
    for item in request.body.get("messages", []):
      role = item.get("role")
      content = item.get("content")
      if role == "system":
        messages.append(Message.system(self._content_text(content)))
      elif role == "user":
        if isinstance(content, list):
          parts: List[Any] = []
          for part in content:
            if part.get("type") == "image_url":
              parts.append(ImagePart.from_data_url(part["image_url"]["url"]))
            else:
              parts.append(TextPart(text=part.get("text", "")))
          messages.append(Message.user(parts))
        else:
          messages.append(Message.user(content or ""))
      elif role == "assistant":
        calls = [self._parse_tool_call(tc) for tc in item.get("tool_calls") or []]
        for call in calls:
          tool_names[call.id] = call.name
        messages.append(Message.assistant(self._content_text(content) or None, tool_calls=calls))
      elif role == "tool":
        call_id = item.get("tool_call_id") or ""
        messages.append(Message.tool_result(call_id, self._content_text(content), name=tool_names.get(call_id)))
      else:
        raise ProtocolError(f"Unknown openai message role: {role!r}", raw=item, provider=self.name)
    return messages

  # --- Streaming ---

  def from_stream_event(self, frame: Any) -> List[StreamEvent]:
    if is_stream_done(frame):
      return [Finish(reason="stop")]
    if isinstance(frame, str):
      text = frame.strip()
      if not text or text.startswith(":"):
        return []
      if text.startswith("data:"):
        text = text[len("data:") :].strip()
      frame = text
    chunk = self._require_mapping(_as_dict(frame), what="stream chunk")

    if "error" in chunk:
      error = chunk["error"]
      message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
      return [Error(cause=message)]

    events: List[StreamEvent] = []
    choices = chunk.get("choices") or []
    if choices:
      choice = choices[0]
      if isinstance(choice.get("message"), dict):
        events.extend(self._complete_response_events(chunk))
        return events

      delta = choice.get("delta") or {}
      if delta.get("content"):
        events.append(TextDelta(text=delta["content"]))
      thinking = delta.get("reasoning_content") or delta.get("reasoning")
      if thinking:
        events.append(ThinkingDelta(text=thinking))
      for tc in delta.get("tool_calls") or []:
        func = tc.get("function") or {}
        events.append(
          ToolCallDelta(
            index=tc.get("index") or 0,
            id=tc.get("id"),
            name=func.get("name"),
            arguments=func.get("arguments") or "",
          )
        )

    if chunk.get("usage"):
      events.append(UsageUpdate(usage=parse_usage(chunk["usage"])))
    if choices and choices[0].get("finish_reason"):
      events.append(Finish(reason=choices[0]["finish_reason"]))
    return events

  def _complete_response_events(self, chunk: Dict[str, Any]) -> List[StreamEvent]:
    response = self.from_wire(chunk)
    events: List[StreamEvent] = []
    if response.message.reasoning:
      events.append(ThinkingDelta(text=response.message.reasoning))
    if response.message.text:
      events.append(TextDelta(text=response.message.text))
    events.extend(ToolCallComplete(tool_call=call) for call in response.message.tool_calls)
    events.append(UsageUpdate(usage=response.usage))
    events.append(Finish(reason=response.finish_reason or "stop"))
    return events
