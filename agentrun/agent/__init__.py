from agentrun.agent.agent import Agent
from agentrun.agent.cancellation import CancellationToken
from agentrun.agent.config import AgentConfig
from agentrun.agent.context import ENVELOPE_VERSION, Context
from agentrun.agent.plugin import Plugin, PluginChain
from agentrun.agent.runner import AgentRunner
from agentrun.agent.sinks import CallbackSink, EventDispatcher, EventSink, QueueSink, TopicSink
from agentrun.agent.state import RunResult, RunState

__all__ = [
  "ENVELOPE_VERSION",
  "Agent",
  "AgentConfig",
  "AgentRunner",
  "CallbackSink",
  "CancellationToken",
  "Context",
  "EventDispatcher",
  "EventSink",
  "Plugin",
  "PluginChain",
  "QueueSink",
  "RunResult",
  "RunState",
  "TopicSink",
]
