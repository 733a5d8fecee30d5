from agentrun.session.table import AgentSession, SessionTable

__all__ = ["AgentSession", "SessionTable"]
