from agentrun.persistence.base import ContextStore, load_context, save_context
from agentrun.persistence.file import FileContextStore
from agentrun.persistence.in_memory import InMemoryContextStore

__all__ = ["ContextStore", "FileContextStore", "InMemoryContextStore", "load_context", "save_context"]
