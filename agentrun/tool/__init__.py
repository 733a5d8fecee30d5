from agentrun.tool.approval import (
  ApprovalDecision,
  ApprovalHandler,
  ApprovalRequest,
  Approve,
  EditArguments,
  PubSubApprovalHandler,
  Reject,
  request_approval,
  respond,
)
from agentrun.tool.executor import ToolExecutor, ToolResult, ToolReturn
from agentrun.tool.function import ToolDefinition, tool
from agentrun.tool.registry import ToolRegistry, clean_tool_name
from agentrun.tool.run_context import RunContext
from agentrun.tool.schema import validate_arguments
from agentrun.tool.update import ContextUpdate

__all__ = [
  "ApprovalDecision",
  "ApprovalHandler",
  "ApprovalRequest",
  "Approve",
  "ContextUpdate",
  "EditArguments",
  "PubSubApprovalHandler",
  "Reject",
  "RunContext",
  "ToolDefinition",
  "ToolExecutor",
  "ToolRegistry",
  "ToolResult",
  "ToolReturn",
  "clean_tool_name",
  "request_approval",
  "respond",
  "tool",
  "validate_arguments",
]
