from agentrun.agent.plugins.human_in_the_loop import HumanInTheLoop
from agentrun.agent.plugins.sub_agent import SubAgentPlugin, SubTask
from agentrun.agent.plugins.summarization import SummarizationPlugin
from agentrun.agent.plugins.todo import TodoPlugin, format_todos

__all__ = ["HumanInTheLoop", "SubAgentPlugin", "SubTask", "SummarizationPlugin", "TodoPlugin", "format_todos"]
