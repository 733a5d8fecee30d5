"""
agentrun - an async runtime for tool-using LLM agents.

Quick Start:
    from agentrun import Agent, tool

    @tool
    def add(a: int, b: int) -> int:
        \"\"\"Add two numbers.\"\"\"
        return a + b

    agent = Agent("openai:gpt-4o-mini", instructions="You do arithmetic.", tools=[add])
    result = await agent.run("What is 2 + 3?")
    print(result.unwrap())

Blocks:
    from agentrun.provider import OpenAIAdapter, AnthropicAdapter, GeminiAdapter, get_model
    from agentrun.tool import ToolExecutor, ContextUpdate, Approve, Reject, EditArguments
    from agentrun.agent.plugins import TodoPlugin, HumanInTheLoop, SubAgentPlugin, SummarizationPlugin
    from agentrun.persistence import InMemoryContextStore, FileContextStore, load_context
    from agentrun.pubsub import InMemoryPubSub
    from agentrun.session import SessionTable

Testing:
    from agentrun.agent.testing import MockModel, tool_call
"""

from agentrun.agent import (
  Agent,
  AgentConfig,
  CallbackSink,
  CancellationToken,
  Context,
  Plugin,
  QueueSink,
  RunResult,
  RunState,
  TopicSink,
)
from agentrun.events import (
  ApprovalRequired,
  RunCancelled,
  RunCompleted,
  RunEvent,
  RunFailed,
  RunStarted,
  ToolCallResult,
  ToolCallStart,
)
from agentrun.exceptions import (
  AgentRunError,
  ConfigurationError,
  ExecutionCancelled,
  MaxIterationsReached,
  PluginError,
  ProtocolError,
  ProviderError,
  SchemaError,
  SerializationError,
  ToolExecutionError,
  ToolTimeout,
  ValidationError,
)
from agentrun.model import Message, ToolCall, Usage
from agentrun.persistence import FileContextStore, InMemoryContextStore, load_context, save_context
from agentrun.provider import get_model
from agentrun.pubsub import InMemoryPubSub
from agentrun.session import SessionTable
from agentrun.tool import Approve, ContextUpdate, EditArguments, Reject, RunContext, ToolDefinition, ToolReturn, tool

__version__ = "0.1.0"

__all__ = [
  "Agent",
  "AgentConfig",
  "AgentRunError",
  "ApprovalRequired",
  "Approve",
  "CallbackSink",
  "CancellationToken",
  "ConfigurationError",
  "Context",
  "ContextUpdate",
  "EditArguments",
  "ExecutionCancelled",
  "FileContextStore",
  "InMemoryContextStore",
  "InMemoryPubSub",
  "MaxIterationsReached",
  "Message",
  "Plugin",
  "PluginError",
  "ProtocolError",
  "ProviderError",
  "QueueSink",
  "Reject",
  "RunCancelled",
  "RunCompleted",
  "RunContext",
  "RunEvent",
  "RunFailed",
  "RunResult",
  "RunStarted",
  "RunState",
  "SchemaError",
  "SerializationError",
  "SessionTable",
  "ToolCall",
  "ToolCallResult",
  "ToolCallStart",
  "ToolDefinition",
  "ToolExecutionError",
  "ToolReturn",
  "ToolTimeout",
  "TopicSink",
  "Usage",
  "ValidationError",
  "get_model",
  "load_context",
  "save_context",
  "tool",
]
