"""Keep long conversations inside the context window by summarizing old turns."""

import json
from typing import Any, List, Optional, Sequence

from agentrun.agent.plugin import Plugin
from agentrun.exceptions import ExecutionCancelled
from agentrun.model.message import Message
from agentrun.utils.log import log_debug, log_info, log_warning

SUMMARY_KEY = "summary"
SUMMARY_COUNT_KEY = "summary_count"
SUMMARY_HEADER = "[Conversation Summary]"
SUMMARY_SETTINGS = {"temperature": 0.3, "max_tokens": 1000}
MAX_LINE_CHARS = 500

_SUMMARIZER_INSTRUCTIONS = "You are a conversation summarizer. Be concise and preserve key information."

_SUMMARIZE_PROMPT = """\
Summarize this conversation concisely, preserving key facts, decisions, and context needed for continuation.

{prior_context}Conversation to summarize:
{conversation}

Provide a concise summary (3-5 paragraphs max)."""


def estimate_tokens(messages: Sequence[Message]) -> int:
  """Rough token count: about four characters per token plus a small per-message overhead."""
  total = 0
  for message in messages:
    chars = len(message.text)
    for call in message.tool_calls:
      chars += len(call.name) + len(json.dumps(call.arguments, default=str))
    total += chars // 4 + 4
  return total


def is_summary(message: Message) -> bool:
  return message.role == "system" and bool(message.metadata.get(SUMMARY_KEY))


def safe_split(conversation: Sequence[Message], keep_recent: int) -> int:
  """Index splitting ``conversation`` into (old, recent).

  The split moves earlier until ``recent`` no longer starts with a tool
  result, so a tool call always stays with its results.
  """
  index = len(conversation) - max(0, keep_recent)
  if index <= 0:
    return 0
  while 0 < index < len(conversation) and conversation[index].role == "tool":
    index -= 1
  return index


def _transcript(messages: Sequence[Message]) -> str:
  lines = []
  for message in messages:
    content = message.text
    if message.tool_calls:
      calls = ", ".join(f"{c.name}({json.dumps(c.arguments, default=str)})" for c in message.tool_calls)
      content = f"{content}\n[called {calls}]" if content else f"[called {calls}]"
    if len(content) > MAX_LINE_CHARS:
      content = content[:MAX_LINE_CHARS] + "..."
    lines.append(f"{message.role.capitalize()}: {content}")
  return "\n".join(lines)


class SummarizationPlugin(Plugin):
  """Summarizes older messages once the outgoing request grows too large.

  Before each model request the plugin estimates the request's token count.
  Above ``max_context_tokens`` it asks ``summary_model`` (the agent's own
  model when unset) to summarize everything except the ``keep_recent`` most
  recent messages, then replaces those older messages with a single system
  message headed ``[Conversation Summary]``. The rewrite is applied to the
  run's Context as well, so the next request starts from the shorter history.

  System messages are always kept, earlier summaries are folded into the new
  one, and tool calls are never separated from their results. If the summary
  request fails the full history is sent unchanged.

  Example::

      agent = Agent(
        "openai:gpt-4o",
        plugins=[SummarizationPlugin(max_context_tokens=100_000, keep_recent=10, summary_model="openai:gpt-4o-mini")],
      )
  """

  name = "summarization"

  def __init__(self, max_context_tokens: int = 100_000, keep_recent: int = 10, summary_model: Optional[Any] = None) -> None:
    if max_context_tokens <= 0:
      raise ValueError("max_context_tokens must be positive")
    self.max_context_tokens = max_context_tokens
    self.keep_recent = max(0, keep_recent)
    self.summary_model = summary_model
    self._agent_model: Optional[Any] = None

  def init(self, agent: Any, context: Any) -> None:
    if self.summary_model is None:
      self._agent_model = agent.resolved_model

  def _model(self) -> Any:
    if self.summary_model is None:
      return self._agent_model
    if isinstance(self.summary_model, str):
      from agentrun.provider.utils import get_model

      self.summary_model = get_model(self.summary_model)
    return self.summary_model

  async def before_request(self, context: Any, messages: List[Message]) -> Optional[List[Message]]:
    estimated = estimate_tokens(messages)
    if estimated <= self.max_context_tokens:
      return None

    kept_system = [m for m in messages if m.role == "system" and not is_summary(m)]
    prior = [m for m in messages if is_summary(m)]
    conversation = [m for m in messages if m.role != "system"]
    split = safe_split(conversation, self.keep_recent)
    if split <= 0:
      log_debug(f"Summarization skipped: nothing older than the {self.keep_recent} most recent messages")
      return None

    old, recent = conversation[:split], conversation[split:]
    log_info(f"Summarization triggered: ~{estimated} tokens exceeds {self.max_context_tokens}; summarizing {len(old)} messages")
    try:
      text = await self._summarize(context, old, prior)
    except ExecutionCancelled:
      raise
    except Exception as e:
      log_warning(f"Summarization failed, keeping all messages: {e}")
      return None

    summary = Message.system(f"{SUMMARY_HEADER}\n{text}", metadata={SUMMARY_KEY: True})
    context.messages = [m for m in context.messages if m.role == "system" and not is_summary(m)] + [summary] + recent
    context.metadata[SUMMARY_COUNT_KEY] = context.metadata.get(SUMMARY_COUNT_KEY, 0) + 1
    return kept_system + [summary] + recent

  async def _summarize(self, context: Any, old: Sequence[Message], prior: Sequence[Message]) -> str:
    model = self._model()
    if model is None:
      raise ValueError("no model available for summarization")

    prior_context = ""
    if prior:
      previous = "\n".join(f"Previous summary: {m.text[len(SUMMARY_HEADER):].strip()}" for m in prior)
      prior_context = f"Prior context:\n{previous}\n\n"
    prompt = _SUMMARIZE_PROMPT.format(prior_context=prior_context, conversation=_transcript(old))

    response = await model.ainvoke(
      [Message.system(_SUMMARIZER_INSTRUCTIONS), Message.user(prompt)],
      settings=dict(SUMMARY_SETTINGS),
    )
    context.usage.record_request(response.usage.input_tokens, response.usage.output_tokens)
    text = response.message.text.strip()
    if not text:
      raise ValueError("summary model returned an empty summary")
    return text
