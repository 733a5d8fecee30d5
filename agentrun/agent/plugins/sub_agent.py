"""Delegate work to child agents from inside a run."""

import asyncio
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from agentrun.agent.cancellation import CancellationToken
from agentrun.agent.plugin import Plugin
from agentrun.tool.function import ToolDefinition
from agentrun.tool.run_context import RunContext
from agentrun.utils.log import log_error, log_info, log_warning

TEMPLATES_KEY = "sub_agent_templates"
DEFAULT_INSTRUCTIONS = "Complete the given task thoroughly."


class SubTask(BaseModel):
  task: str = Field(description="The task description/prompt for the sub-agent")
  template: Optional[str] = Field(default=None, description="Name of a pre-configured agent template")
  model: Optional[str] = Field(default=None, description="Model string for an inline agent, e.g. 'openai:gpt-4o-mini'")
  instructions: Optional[str] = Field(default=None, description="Instructions for an inline agent")


class SubAgentPlugin(Plugin):
  """Adds ``delegate_task`` and ``delegate_parallel`` tools.

  Each child run gets its own Context and CancellationToken; cancelling the
  parent run cancels its children at their next checkpoint. Only the parent
  dependencies named in ``shared_deps`` are passed down. A failing or slow
  child never fails the parent's tool call: it comes back as
  ``{"success": False, "error": ...}``.

  Templates map a name to either an ``Agent`` or a dict with ``model``,
  ``instructions``, ``tools`` and optionally ``config`` / ``shared_deps``.
  Dict templates may also be supplied at run time in
  ``deps["sub_agent_templates"]``.

  Example::

      researcher = Agent("openai:gpt-4o-mini", instructions="Find accurate information.")
      agent = Agent(model, plugins=[SubAgentPlugin({"researcher": researcher})])
  """

  name = "sub_agent"

  def __init__(
    self,
    templates: Optional[Mapping[str, Any]] = None,
    shared_deps: Sequence[str] = (),
    timeout: Optional[float] = 120.0,
    max_parallel: int = 4,
  ) -> None:
    self.templates: Dict[str, Any] = dict(templates or {})
    self.shared_deps = tuple(shared_deps)
    self.timeout = timeout
    self.max_parallel = max(1, max_parallel)

  def tools(self, agent: Any) -> List[ToolDefinition]:
    # Child runs enforce their own timeout; the tool-level timeout and retries stay off
    return [
      ToolDefinition.from_callable(self.delegate_task, name="delegate_task", max_retries=0, timeout=None),
      ToolDefinition.from_callable(self.delegate_parallel, name="delegate_parallel", max_retries=0, timeout=None),
    ]

  # ------------------------------------------------------------------
  # Tools
  # ------------------------------------------------------------------

  async def delegate_task(
    self,
    ctx: RunContext,
    task: str,
    template: Optional[str] = None,
    model: Optional[str] = None,
    instructions: Optional[str] = None,
  ) -> Dict[str, Any]:
    """Delegate a task to a specialized sub-agent.

    The sub-agent runs independently with its own context and returns a
    result. Use this when a task needs specialized expertise or should be
    handled separately.
    """
    return await self._run_child(ctx, SubTask(task=task, template=template, model=model, instructions=instructions))

  async def delegate_parallel(self, ctx: RunContext, tasks: List[SubTask]) -> Dict[str, Any]:
    """Run several independent sub-agent tasks at the same time.

    Failed or timed-out tasks are reported individually; the others still
    return their results.
    """
    semaphore = asyncio.Semaphore(self.max_parallel)

    async def _bounded(sub_task: SubTask) -> Dict[str, Any]:
      async with semaphore:
        return await self._run_child(ctx, sub_task)

    outcomes = await asyncio.gather(*(_bounded(SubTask.model_validate(t)) for t in tasks), return_exceptions=True)
    results = []
    for sub_task, outcome in zip(tasks, outcomes):
      if isinstance(outcome, BaseException):
        outcome = {"success": False, "error": f"Sub-agent execution failed: {outcome}"}
      results.append({"task": SubTask.model_validate(sub_task).task, **outcome})
    completed = sum(1 for r in results if r.get("success"))
    return {"success": completed > 0, "completed": completed, "failed": len(results) - completed, "results": results}

  # ------------------------------------------------------------------
  # Helpers
  # ------------------------------------------------------------------

  def _resolve(self, ctx: RunContext, sub_task: SubTask) -> Any:
    from agentrun.agent.agent import Agent

    if sub_task.template:
      templates = {**(ctx.get(TEMPLATES_KEY) or {}), **self.templates}
      template = templates.get(sub_task.template)
      if template is None:
        available = ", ".join(sorted(templates))
        return f"Template '{sub_task.template}' not found. Available: {available}"
      if isinstance(template, Agent):
        return template
      return Agent(
        template["model"],
        name=sub_task.template,
        instructions=template.get("instructions", ""),
        tools=template.get("tools") or [],
        config=template.get("config"),
      )
    if sub_task.model:
      return Agent(sub_task.model, name="sub_agent", instructions=sub_task.instructions or DEFAULT_INSTRUCTIONS)
    return "Either 'template' or 'model' must be provided for sub-agent delegation."

  @staticmethod
  async def _forward_cancel(parent: Any, child: CancellationToken) -> None:
    await parent.wait()
    child.cancel(parent.reason or "Parent run cancelled")

  async def _run_child(self, ctx: RunContext, sub_task: SubTask) -> Dict[str, Any]:
    child = self._resolve(ctx, sub_task)
    if isinstance(child, str):
      return {"success": False, "error": child}

    deps = {key: ctx.deps[key] for key in self.shared_deps if key in ctx.deps}
    token = CancellationToken()
    parent = ctx.cancellation_token
    if parent is not None and parent.is_cancelled:
      return {"success": False, "error": "Sub-agent not started: parent run was cancelled"}
    log_info(f"Spawning sub-agent '{child.name}' for task: {sub_task.task[:80]}")
    link = asyncio.ensure_future(self._forward_cancel(parent, token)) if parent is not None else None
    try:
      run = child.run(sub_task.task, deps=deps, cancellation_token=token)
      result = await asyncio.wait_for(run, self.timeout) if self.timeout is not None else await run
    except asyncio.TimeoutError:
      log_warning(f"Sub-agent '{child.name}' timed out after {self.timeout}s")
      return {"success": False, "error": f"Sub-agent timed out after {self.timeout}s"}
    except Exception as e:
      log_error(f"Sub-agent '{child.name}' crashed: {e}")
      return {"success": False, "error": f"Sub-agent execution failed: {e}"}
    finally:
      if link is not None:
        link.cancel()

    if not result.is_success:
      log_warning(f"Sub-agent '{child.name}' failed: {result.error}")
      return {"success": False, "error": str(result.error)}

    output = result.output.model_dump(mode="json") if isinstance(result.output, BaseModel) else result.output
    return {
      "success": True,
      "result": output,
      "tokens_used": result.usage.total_tokens,
      "iterations": result.iterations,
    }
