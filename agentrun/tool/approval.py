"""Human approval gate for tool calls."""

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from agentrun.events import ApprovalRequired
from agentrun.exceptions import ExecutionCancelled
from agentrun.model.message import ToolCall
from agentrun.pubsub.base import PubSub, approval_response_topic, approval_topic
from agentrun.utils.log import log_info, log_warning

DEFAULT_APPROVAL_TIMEOUT = 300.0


@dataclass(frozen=True)
class Approve:
  pass


@dataclass(frozen=True)
class Reject:
  reason: Optional[str] = None


@dataclass(frozen=True)
class EditArguments:
  arguments: Dict[str, Any] = field(default_factory=dict)


ApprovalDecision = Union[Approve, Reject, EditArguments]


@dataclass(frozen=True)
class ApprovalRequest:
  tool_call: ToolCall
  tool_name: str
  arguments: Dict[str, Any]
  run_id: Optional[str] = None
  session_id: Optional[str] = None

  def to_event(self) -> ApprovalRequired:
    return ApprovalRequired(
      run_id=self.run_id,
      session_id=self.session_id,
      tool_call=self.tool_call,
      tool_name=self.tool_name,
      arguments=self.arguments,
    )


ApprovalHandler = Callable[[ApprovalRequest], Union[Any, Awaitable[Any]]]


def coerce_decision(value: Any) -> ApprovalDecision:
  """Accept decision objects, ``True``/``False``, strings and wire dicts.

  Wire dicts look like ``{"decision": "approve"}``,
  ``{"decision": "reject", "reason": "..."}`` or
  ``{"decision": "edit", "arguments": {...}}``.
  """
  if isinstance(value, (Approve, Reject, EditArguments)):
    return value
  if value is True:
    return Approve()
  if value is False or value is None:
    return Reject()
  if isinstance(value, str):
    value = {"decision": value}
  if isinstance(value, dict):
    decision = str(value.get("decision", "")).lower()
    if decision in ("approve", "approved"):
      return Approve()
    if decision in ("edit", "edit_arguments"):
      return EditArguments(arguments=dict(value.get("arguments") or {}))
    if decision in ("reject", "rejected"):
      return Reject(reason=value.get("reason"))
  raise ValueError(f"Unrecognized approval decision: {value!r}")


def decision_to_dict(decision: ApprovalDecision) -> Dict[str, Any]:
  if isinstance(decision, Approve):
    return {"decision": "approve"}
  if isinstance(decision, EditArguments):
    return {"decision": "edit", "arguments": decision.arguments}
  return {"decision": "reject", "reason": decision.reason}


async def request_approval(
  handler: ApprovalHandler,
  request: ApprovalRequest,
  timeout: Optional[float] = DEFAULT_APPROVAL_TIMEOUT,
  cancellation_token: Optional[Any] = None,
) -> ApprovalDecision:
  """Ask ``handler`` for a decision; a timeout resolves to Reject.

  Raises:
      ExecutionCancelled: ``cancellation_token`` fired before a decision
          arrived. The pending handler call is cancelled.
  """

  async def _ask() -> Any:
    result = handler(request)
    if inspect.isawaitable(result):
      result = await result
    return result

  ask = asyncio.ensure_future(_ask())
  waiters = {ask}
  stop = None
  if cancellation_token is not None:
    stop = asyncio.ensure_future(cancellation_token.wait())
    waiters.add(stop)
  try:
    done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
  finally:
    for waiter in waiters:
      if not waiter.done():
        waiter.cancel()

  if ask in done:
    raw = ask.result()
  elif stop is not None and stop in done:
    log_info(f"Approval for tool '{request.tool_name}' abandoned: run cancelled")
    raise ExecutionCancelled(reason=cancellation_token.reason)
  else:
    log_warning(f"Approval for tool '{request.tool_name}' timed out after {timeout}s; rejecting")
    return Reject(reason=f"Approval timed out after {timeout}s")
  decision = coerce_decision(raw)
  log_info(f"Approval decision for tool '{request.tool_name}' ({request.tool_call.id}): {type(decision).__name__}")
  return decision


class PubSubApprovalHandler:
  """Approval over the notification boundary.

  Publishes an ``ApprovalRequired`` event on the session's approval topic and
  waits for a matching reply on the response topic (see ``respond``). The
  executor's timeout turns a missing reply into a Reject.
  """

  def __init__(self, pubsub: PubSub, session_id: str) -> None:
    self.pubsub = pubsub
    self.session_id = session_id

  async def __call__(self, request: ApprovalRequest) -> ApprovalDecision:
    subscription = self.pubsub.subscribe(approval_response_topic(self.session_id))
    try:
      self.pubsub.publish(approval_topic(self.session_id), request.to_event().to_dict())
      while True:
        reply = await subscription.get()
        if isinstance(reply, dict) and reply.get("tool_call_id") == request.tool_call.id:
          return coerce_decision(reply)
    finally:
      subscription.close()


def respond(pubsub: PubSub, session_id: str, tool_call_id: str, decision: Any) -> int:
  """Publish a decision for a pending PubSub approval."""
  payload = decision_to_dict(coerce_decision(decision))
  payload["tool_call_id"] = tool_call_id
  return pubsub.publish(approval_response_topic(session_id), payload)
