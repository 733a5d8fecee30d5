"""Todo tracking tools with progress injected into the system prompt."""

from datetime import datetime, timezone
from itertools import count
from typing import Any, Dict, List, Literal, Optional

from agentrun.agent.plugin import Plugin
from agentrun.tool.function import ToolDefinition
from agentrun.tool.run_context import RunContext
from agentrun.tool.update import ContextUpdate
from agentrun.utils.log import log_debug

TODOS_KEY = "todos"

Status = Literal["pending", "in_progress", "completed"]
Priority = Literal["low", "medium", "high"]

_PRIORITY_MARKERS = {"high": "[HIGH]", "medium": "[MED]", "low": "[LOW]"}
_ids = count(1)


def _now() -> str:
  return datetime.now(timezone.utc).isoformat()


def _todos(ctx: RunContext) -> List[Dict[str, Any]]:
  return [dict(t) for t in ctx.get(TODOS_KEY) or []]


def _find(todos: List[Dict[str, Any]], todo_id: int) -> Optional[Dict[str, Any]]:
  return next((t for t in todos if t.get("id") == todo_id), None)


def _next_id(todos: List[Dict[str, Any]]) -> int:
  # Persisted lists may already hold ids from an earlier process
  highest = max((t.get("id", 0) for t in todos), default=0)
  return max(highest + 1, next(_ids))


def add_todo(ctx: RunContext, text: str, status: Status = "pending", priority: Priority = "medium"):
  """Add a task to the todo list."""
  todos = _todos(ctx)
  todo = {"id": _next_id(todos), "text": text, "status": status, "priority": priority, "created_at": _now(), "updated_at": _now()}
  return {"success": True, "todo": todo, "message": f"Todo added: {text}"}, ContextUpdate().append(TODOS_KEY, todo)


def update_todo(
  ctx: RunContext,
  id: int,
  text: Optional[str] = None,
  status: Optional[Status] = None,
  priority: Optional[Priority] = None,
):
  """Update the text, status or priority of an existing task."""
  todos = _todos(ctx)
  todo = _find(todos, id)
  if todo is None:
    return {"success": False, "error": f"Todo not found with id: {id}", "available_ids": [t["id"] for t in todos]}
  for key, value in (("text", text), ("status", status), ("priority", priority)):
    if value is not None:
      todo[key] = value
  todo["updated_at"] = _now()
  return {"success": True, "todo": todo, "message": f"Todo updated: {todo['text']}"}, ContextUpdate().set(TODOS_KEY, todos)


def complete_todo(ctx: RunContext, id: int):
  """Mark a task as completed."""
  todos = _todos(ctx)
  todo = _find(todos, id)
  if todo is None:
    return {"success": False, "error": f"Todo not found with id: {id}", "available_ids": [t["id"] for t in todos]}
  todo.update(status="completed", completed_at=_now(), updated_at=_now())
  return {"success": True, "todo": todo, "message": f"Todo completed: {todo['text']}"}, ContextUpdate().set(TODOS_KEY, todos)


def delete_todo(ctx: RunContext, id: int):
  """Remove a task from the todo list."""
  todos = _todos(ctx)
  todo = _find(todos, id)
  if todo is None:
    return {"success": False, "error": f"Todo not found with id: {id}"}
  remaining = [t for t in todos if t["id"] != id]
  return {"success": True, "message": f"Todo deleted: {todo['text']}"}, ContextUpdate().set(TODOS_KEY, remaining)


def list_todos(ctx: RunContext, status: Optional[Status] = None, priority: Optional[Priority] = None):
  """List tasks, optionally filtered by status or priority."""
  todos = _todos(ctx)
  filtered = [t for t in todos if (status is None or t["status"] == status) and (priority is None or t["priority"] == priority)]
  return {
    "success": True,
    "todos": filtered,
    "total": len(filtered),
    "by_status": {s: sum(1 for t in todos if t["status"] == s) for s in ("pending", "in_progress", "completed")},
  }


def format_todos(todos: List[Dict[str, Any]]) -> str:
  """Render todos grouped as In Progress / Pending / Completed."""
  sections = []
  for label, status in (("In Progress", "in_progress"), ("Pending", "pending")):
    group = [t for t in todos if t.get("status") == status]
    if group:
      lines = "\n".join(f"  {_PRIORITY_MARKERS.get(t.get('priority'), '-')} [{t['id']}] {t['text']}" for t in group)
      sections.append(f"{label} ({len(group)}):\n{lines}")
  completed = [t for t in todos if t.get("status") == "completed"]
  if completed:
    lines = "\n".join(f"  * [{t['id']}] {t['text']}" for t in completed)
    sections.append(f"Completed ({len(completed)}):\n{lines}")
  if not sections:
    return "No tasks yet. Use add_todo() to create tasks."
  return "\n\n".join(sections)


class TodoPlugin(Plugin):
  """Gives the agent a todo list kept in ``deps["todos"]``."""

  name = "todo"

  def init(self, agent: Any, context: Any) -> None:
    context.deps.setdefault(TODOS_KEY, [])

  def tools(self, agent: Any) -> List[ToolDefinition]:
    return [ToolDefinition.from_callable(fn) for fn in (add_todo, update_todo, complete_todo, delete_todo, list_todos)]

  def system_prompt(self, context: Any) -> Optional[str]:
    todos = context.deps.get(TODOS_KEY) or []
    if not todos:
      return None
    log_debug(f"Injecting {len(todos)} todos into system prompt", log_level=2)
    return (
      "## Current Task Progress\n\n"
      f"{format_todos(todos)}\n\n"
      "You have access to todo management tools:\n"
      "- add_todo(text, status?, priority?) - Create new task\n"
      "- update_todo(id, text?, status?, priority?) - Update existing task\n"
      "- complete_todo(id) - Mark task as completed\n"
      "- list_todos(status?, priority?) - List all tasks\n\n"
      "Use these tools to track your progress and stay organized."
    )
