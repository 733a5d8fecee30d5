"""Google Gemini ``generateContent`` wire format."""

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
from agentrun.provider.events import Error, Finish, StreamEvent, TextDelta, ThinkingDelta, ToolCallComplete, UsageUpdate

FINISH_REASONS = {
  "STOP": "stop",
  "MAX_TOKENS": "length",
  "SAFETY": "safety",
}


def normalize_finish_reason(reason: Optional[str]) -> str:
  if not reason:
    return "stop"
  return FINISH_REASONS.get(reason, reason.lower())


def parse_usage(data: Optional[Dict[str, Any]], requests: int = 1) -> Usage:
  if not data:
    return Usage(requests=requests)
  return Usage(
    requests=requests,
    input_tokens=data.get("promptTokenCount") or 0,
    output_tokens=data.get("candidatesTokenCount") or 0,
  )


class GeminiAdapter(ProviderAdapter):
  """Alternating user/model turns made of parts.

  Gemini does not always assign tool-call ids, so missing ones are
  synthesized. Ids are written back through ``functionCall.id`` and
  ``functionResponse.id`` so results stay correlated across turns.
  """

  name = "gemini"

  # --- Requests ---

  def to_wire(
    self,
    messages: Sequence[Message],
    tools: Optional[Sequence[Any]] = None,
    settings: Optional[Dict[str, Any]] = None,
  ) -> WireRequest:
    system_chunks = [m.text for m in messages if m.role == "system" and m.text]
    contents: List[Dict[str, Any]] = []
    for message in messages:
      if message.role == "system":
        continue
      if message.role == "tool":
        part = {"functionResponse": {"id": message.tool_call_id, "name": message.name or "", "response": self._response_payload(message)}}
        previous = contents[-1] if contents else None
        if previous and previous["role"] == "user" and all("functionResponse" in p for p in previous["parts"]):
          previous["parts"].append(part)
        else:
          contents.append({"role": "user", "parts": [part]})
        continue
      contents.append(self._message_to_wire(message))

    body: Dict[str, Any] = {"contents": contents}
    if system_chunks:
      body["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_chunks)}]}
    if tools:
      body["tools"] = self.tools_to_wire(tools)
    generation_config = {k: v for k, v in (settings or {}).items() if v is not None}
    if generation_config:
      body["generationConfig"] = generation_config
    return WireRequest(provider=self.name, body=body)

  def tools_to_wire(self, tools: Sequence[Any]) -> List[Dict[str, Any]]:
    return [{"functionDeclarations": [tool_schema(t) for t in tools]}]

  def _response_payload(self, message: Message) -> Dict[str, Any]:
    try:
      decoded = json.loads(message.text)
    except ValueError:
      decoded = None
    if isinstance(decoded, dict):
      return decoded
    return {"result": message.text}

  def _message_to_wire(self, message: Message) -> Dict[str, Any]:
    if message.role == "user":
      return {"role": "user", "parts": [self._part_to_wire(p) for p in message.parts] or [{"text": ""}]}

    parts: List[Dict[str, Any]] = []
    if message.text:
      parts.append({"text": message.text})
    for call in message.tool_calls:
      parts.append({"functionCall": {"id": call.id, "name": call.name, "args": call.arguments}})
    return {"role": "model", "parts": parts or [{"text": ""}]}

  def _part_to_wire(self, part: Any) -> Dict[str, Any]:
    if isinstance(part, ImagePart):
      if part.is_inline:
        return {"inlineData": {"mimeType": part.media_type, "data": part.data}}
      return {"fileData": {"mimeType": part.media_type or "image/*", "fileUri": part.url}}
    return {"text": part.text}

  # --- Responses ---

  def from_wire(self, payload: Any) -> ModelResponse:
    data = self._require_mapping(payload)
    if "error" in data:
      raise ProtocolError(f"gemini returned an error payload: {data['error']}", raw=data, provider=self.name)
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
      raise ProtocolError("gemini response has no candidates", raw=data, provider=self.name)
    candidate = candidates[0]
    parts = (candidate.get("content") or {}).get("parts") or []

    texts: List[str] = []
    thoughts: List[str] = []
    calls: List[ToolCall] = []
    for part in parts:
      if "functionCall" in part:
        calls.append(self._parse_function_call(part["functionCall"]))
      elif "text" in part:
        if part.get("thought"):
          thoughts.append(part["text"])
        else:
          texts.append(part["text"])

    message = Message.assistant(
      content="".join(texts) or None,
      tool_calls=calls,
      reasoning="".join(thoughts) or None,
      metadata={"model": data.get("modelVersion")} if data.get("modelVersion") else {},
    )
    return ModelResponse(
      message=message,
      usage=parse_usage(data.get("usageMetadata")),
      finish_reason=normalize_finish_reason(candidate.get("finishReason")),
      model=data.get("modelVersion"),
    )

  def _parse_function_call(self, data: Dict[str, Any]) -> ToolCall:
    if not data.get("name"):
      raise ProtocolError("gemini functionCall is missing a name", raw=data, provider=self.name)
    return ToolCall(id=data.get("id") or synthesize_call_id(), name=data["name"], arguments=decode_arguments(data.get("args")))

  def from_wire_messages(self, request: WireRequest) -> List[Message]:
    messages: List[Message] = []
    instruction = request.body.get("systemInstruction")
    if instruction:
      messages.append(Message.system("".join(p.get("text", "") for p in instruction.get("parts", []))))

    # Results without ids are matched to the earliest open call with the same name
    open_calls: List[ToolCall] = []
    for item in request.body.get("contents", []):
      parts = item.get("parts") or []
      if item.get("role") == "model":
        text = "".join(p.get("text", "") for p in parts if "text" in p)
        calls = [self._parse_function_call(p["functionCall"]) for p in parts if "functionCall" in p]
        open_calls.extend(calls)
        messages.append(Message.assistant(text or None, tool_calls=calls))
        continue

      user_parts: List[Any] = []
      for part in parts:
        if "functionResponse" in part:
          response = part["functionResponse"]
          call_id = response.get("id")
          if not call_id:
            match = next((c for c in open_calls if c.name == response.get("name")), None)
            call_id = match.id if match else synthesize_call_id()
          open_calls = [c for c in open_calls if c.id != call_id]
          payload = response.get("response") or {}
          text = payload["result"] if set(payload) == {"result"} and isinstance(payload["result"], str) else json.dumps(payload)
          messages.append(Message.tool_result(call_id, text, name=response.get("name") or None))
        elif "inlineData" in part:
          inline = part["inlineData"]
          user_parts.append(ImagePart(data=inline.get("data"), media_type=inline.get("mimeType")))
        elif "fileData" in part:
          file_data = part["fileData"]
          user_parts.append(ImagePart(url=file_data.get("fileUri"), media_type=file_data.get("mimeType")))
        elif "text" in part:
          user_parts.append(TextPart(text=part["text"]))
      if user_parts:
        if len(user_parts) == 1 and isinstance(user_parts[0], TextPart):
          messages.append(Message.user(user_parts[0].text))
        else:
          messages.append(Message.user(user_parts))
    return messages

  # --- Streaming ---

  def from_stream_event(self, frame: Any) -> List[StreamEvent]:
    if is_stream_done(frame):
      return [Finish(reason="stop")]
    if isinstance(frame, str):
      text = frame.strip()
      if not text:
        return []
      if text.startswith("data:"):
        text = text[len("data:") :].strip()
      frame = text
    chunk = self._require_mapping(frame, what="stream chunk")

    if "error" in chunk:
      error = chunk["error"]
      return [Error(cause=error.get("message", str(error)) if isinstance(error, dict) else str(error))]

    events: List[StreamEvent] = []
    candidates = chunk.get("candidates") or []
    finish_reason = None
    if candidates:
      candidate = candidates[0]
      for part in (candidate.get("content") or {}).get("parts") or []:
        if "functionCall" in part:
          events.append(ToolCallComplete(tool_call=self._parse_function_call(part["functionCall"])))
        elif part.get("text"):
          events.append(ThinkingDelta(text=part["text"]) if part.get("thought") else TextDelta(text=part["text"]))
      finish_reason = candidate.get("finishReason")

    if chunk.get("usageMetadata"):
      events.append(UsageUpdate(usage=parse_usage(chunk["usageMetadata"])))
    if finish_reason:
      events.append(Finish(reason=normalize_finish_reason(finish_reason)))
    return events
