"""
Unit tests for the OpenAI, Anthropic and Gemini wire adapters.

Covers canonical -> wire -> canonical round trips, tool declarations,
response parsing (text, tool calls, usage, reasoning) and malformed payloads.
No API calls.
"""

import json

import pytest

from agentrun.exceptions import ProtocolError
from agentrun.model.message import ImagePart, Message, TextPart, ToolCall
from agentrun.provider import AnthropicAdapter, GeminiAdapter, OpenAIAdapter, get_adapter
from agentrun.provider.base import WireRequest, decode_arguments
from agentrun.tool.function import ToolDefinition


def add(a: int, b: int) -> int:
  """Add two numbers."""
  return a + b


def _conversation():
  return [
    Message.system("You do arithmetic."),
    Message.user("What is 2 + 3?"),
    Message.assistant(tool_calls=[ToolCall(id="call_1", name="add", arguments={"a": 2, "b": 3})]),
    Message.tool_result("call_1", "5", name="add"),
    Message.assistant("The answer is 5"),
  ]


def _shape(messages):
  return [(m.role, m.text, [(c.id, c.name, c.arguments) for c in m.tool_calls], m.tool_call_id) for m in messages]


@pytest.mark.unit
class TestRoundTrip:
  @pytest.mark.parametrize("adapter", [OpenAIAdapter(), AnthropicAdapter(), GeminiAdapter()], ids=lambda a: a.name)
  def test_conversation_survives_round_trip(self, adapter):
    messages = _conversation()
    restored = adapter.from_wire_messages(adapter.to_wire(messages))
    assert _shape(restored) == _shape(messages)

  def test_anthropic_groups_consecutive_tool_results(self):
    messages = [
      Message.user("go"),
      Message.assistant(tool_calls=[ToolCall(id="a", name="x"), ToolCall(id="b", name="y")]),
      Message.tool_result("a", "1", name="x"),
      Message.tool_result("b", "2", name="y", is_error=True),
    ]
    wire = AnthropicAdapter().to_wire(messages).body
    assert len(wire["messages"]) == 3
    results = wire["messages"][2]["content"]
    assert [r["tool_use_id"] for r in results] == ["a", "b"]
    assert results[1]["is_error"] is True
    restored = AnthropicAdapter().from_wire_messages(WireRequest("anthropic", wire))
    assert restored[-1].is_error

  def test_anthropic_system_goes_to_top_level(self):
    wire = AnthropicAdapter().to_wire([Message.system("be brief"), Message.user("hi")]).body
    assert wire["system"] == "be brief"
    assert all(m["role"] != "system" for m in wire["messages"])

  def test_gemini_uses_model_role_and_system_instruction(self):
    wire = GeminiAdapter().to_wire(_conversation()).body
    assert wire["systemInstruction"]["parts"][0]["text"] == "You do arithmetic."
    assert [c["role"] for c in wire["contents"]] == ["user", "model", "user", "model"]
    assert wire["contents"][1]["parts"][0]["functionCall"]["id"] == "call_1"

  def test_gemini_result_without_id_matches_open_call(self):
    body = {
      "contents": [
        {"role": "user", "parts": [{"text": "go"}]},
        {"role": "model", "parts": [{"functionCall": {"id": "g1", "name": "add", "args": {"a": 1}}}]},
        {"role": "user", "parts": [{"functionResponse": {"name": "add", "response": {"result": "2"}}}]},
      ]
    }
    restored = GeminiAdapter().from_wire_messages(WireRequest("gemini", body))
    assert restored[-1].tool_call_id == "g1"
    assert restored[-1].text == "2"

  def test_openai_image_parts(self):
    message = Message.user([TextPart(text="what is this?"), ImagePart(data="QUJD", media_type="image/jpeg")])
    wire = OpenAIAdapter().to_wire([message]).body
    content = wire["messages"][0]["content"]
    assert content[1]["image_url"]["url"] == "data:image/jpeg;base64,QUJD"
    restored = OpenAIAdapter().from_wire_messages(WireRequest("openai", wire))
    assert restored[0].content[1].data == "QUJD"


@pytest.mark.unit
class TestToolDeclarations:
  def test_openai_tools(self):
    tools = OpenAIAdapter().tools_to_wire([ToolDefinition.from_callable(add)])
    assert tools[0]["type"] == "function"
    assert tools[0]["function"]["name"] == "add"
    assert tools[0]["function"]["parameters"]["required"] == ["a", "b"]

  def test_anthropic_tools(self):
    tools = AnthropicAdapter().tools_to_wire([ToolDefinition.from_callable(add)])
    assert tools[0]["input_schema"]["properties"]["a"]["type"] == "integer"

  def test_gemini_tools(self):
    tools = GeminiAdapter().tools_to_wire([{"name": "ping", "description": "Ping"}])
    assert tools[0]["functionDeclarations"][0]["parameters"] == {"type": "object", "properties": {}}

  def test_settings_pass_through(self):
    wire = OpenAIAdapter().to_wire([Message.user("hi")], settings={"temperature": 0.2, "top_p": None}).body
    assert wire["temperature"] == 0.2
    assert "top_p" not in wire


@pytest.mark.unit
class TestResponseParsing:
  def test_openai_tool_call_response(self):
    payload = {
      "model": "gpt-4o",
      "choices": [
        {
          "finish_reason": "tool_calls",
          "message": {
            "role": "assistant",
            "content": None,
            "tool_calls": [{"id": "c1", "type": "function", "function": {"name": "add", "arguments": '{"a": 2, "b": 3}'}}],
          },
        }
      ],
      "usage": {"prompt_tokens": 12, "completion_tokens": 7},
    }
    response = OpenAIAdapter().from_wire(payload)
    assert response.message.tool_calls[0].arguments == {"a": 2, "b": 3}
    assert response.usage.input_tokens == 12
    assert response.usage.output_tokens == 7
    assert response.finish_reason == "tool_calls"

  def test_openai_accepts_json_string(self):
    payload = json.dumps({"choices": [{"message": {"role": "assistant", "content": "hi"}, "finish_reason": "stop"}]})
    assert OpenAIAdapter().from_wire(payload).message.text == "hi"

  def test_anthropic_response_with_thinking(self):
    payload = {
      "model": "claude",
      "content": [
        {"type": "thinking", "thinking": "hmm"},
        {"type": "text", "text": "Let me add."},
        {"type": "tool_use", "id": "tu_1", "name": "add", "input": {"a": 1, "b": 2}},
      ],
      "stop_reason": "tool_use",
      "usage": {"input_tokens": 5, "output_tokens": 3},
    }
    response = AnthropicAdapter().from_wire(payload)
    assert response.message.reasoning == "hmm"
    assert response.message.text == "Let me add."
    assert response.message.tool_calls[0].id == "tu_1"
    assert response.usage.total_tokens == 8

  def test_gemini_synthesizes_missing_ids(self):
    payload = {
      "candidates": [{"content": {"role": "model", "parts": [{"functionCall": {"name": "add", "args": {"a": 1}}}]}, "finishReason": "STOP"}],
      "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 2},
    }
    response = GeminiAdapter().from_wire(payload)
    call = response.message.tool_calls[0]
    assert call.id.startswith("call_")
    assert response.finish_reason == "stop"
    assert response.usage.input_tokens == 4

  @pytest.mark.parametrize(
    "adapter,payload",
    [
      (OpenAIAdapter(), {"choices": []}),
      (OpenAIAdapter(), "not json"),
      (OpenAIAdapter(), {"error": {"message": "bad"}}),
      (OpenAIAdapter(), {"choices": [{"message": {"role": "assistant", "tool_calls": [{"id": "x", "function": {}}]}}]}),
      (AnthropicAdapter(), {"content": "nope"}),
      (AnthropicAdapter(), {"content": [{"type": "tool_use", "name": "add"}]}),
      (GeminiAdapter(), {"candidates": []}),
      (GeminiAdapter(), [1, 2, 3]),
    ],
  )
  def test_malformed_payloads_raise_protocol_error(self, adapter, payload):
    with pytest.raises(ProtocolError) as exc_info:
      adapter.from_wire(payload)
    assert exc_info.value.provider == adapter.name


@pytest.mark.unit
class TestHelpers:
  def test_decode_arguments(self):
    assert decode_arguments('{"a": 1}') == {"a": 1}
    assert decode_arguments("") == {}
    assert decode_arguments(None) == {}
    assert decode_arguments({"a": 1}) == {"a": 1}
    assert decode_arguments("[1]") == {"value": [1]}

  def test_decode_arguments_invalid_json(self):
    decoded = decode_arguments("{oops")
    assert decoded["error"] == "Invalid JSON arguments"
    assert decoded["raw"] == "{oops"

  def test_get_adapter(self):
    assert isinstance(get_adapter("anthropic"), AnthropicAdapter)
    with pytest.raises(ValueError):
      get_adapter("nope")
