"""
Unit tests for SubAgentPlugin delegation.

Child runs are isolated: their failures and timeouts come back as
``{"success": False, "error": ...}`` rather than failing the parent.
"""

import asyncio
from types import MappingProxyType

import pytest

from agentrun.agent import Agent, AgentConfig, CancellationToken
from agentrun.agent.plugins import SubAgentPlugin
from agentrun.agent.testing import MockModel, tool_call
from agentrun.tool import RunContext


def _ctx(**deps):
  return RunContext(deps=MappingProxyType(deps))


@pytest.mark.unit
class TestSubAgentPlugin:
  def test_tools(self):
    definitions = SubAgentPlugin().tools(None)
    assert [d.name for d in definitions] == ["delegate_task", "delegate_parallel"]
    assert all(d.takes_context for d in definitions)
    assert "ctx" not in definitions[0].parameters["properties"]
    assert definitions[1].parameters["properties"]["tasks"]["type"] == "array"

  @pytest.mark.asyncio
  async def test_agent_template(self):
    plugin = SubAgentPlugin({"researcher": Agent(MockModel(responses=["found it"]), name="researcher")})
    result = await plugin.delegate_task(_ctx(), "look it up", template="researcher")
    assert result["success"] is True
    assert result["result"] == "found it"
    assert "tokens_used" in result

  @pytest.mark.asyncio
  async def test_dict_template_from_deps(self):
    templates = {"writer": {"model": MockModel(responses=["drafted"]), "instructions": "Write well."}}
    result = await SubAgentPlugin().delegate_task(_ctx(sub_agent_templates=templates), "draft", template="writer")
    assert result["result"] == "drafted"

  @pytest.mark.asyncio
  async def test_missing_template(self):
    plugin = SubAgentPlugin({"b": Agent(MockModel()), "a": Agent(MockModel())})
    result = await plugin.delegate_task(_ctx(), "x", template="c")
    assert result == {"success": False, "error": "Template 'c' not found. Available: a, b"}

  @pytest.mark.asyncio
  async def test_template_or_model_required(self):
    result = await SubAgentPlugin().delegate_task(_ctx(), "x")
    assert result == {"success": False, "error": "Either 'template' or 'model' must be provided for sub-agent delegation."}

  @pytest.mark.asyncio
  async def test_timeout(self):
    plugin = SubAgentPlugin({"slow": Agent(MockModel(delay=1.0))}, timeout=0.05)
    result = await plugin.delegate_task(_ctx(), "x", template="slow")
    assert result == {"success": False, "error": "Sub-agent timed out after 0.05s"}

  @pytest.mark.asyncio
  async def test_child_failure_is_reported(self):
    plugin = SubAgentPlugin({"broken": Agent(MockModel(responses=[ValueError("bad model")]))})
    result = await plugin.delegate_task(_ctx(), "x", template="broken")
    assert result["success"] is False
    assert result["error"]

  @pytest.mark.asyncio
  async def test_only_shared_deps_reach_child(self):
    seen = []

    def inspect_deps(ctx: RunContext) -> str:
      """Report visible dependency keys."""
      seen.append(sorted(ctx.deps))
      return "ok"

    child = Agent(MockModel(responses=[tool_call("inspect_deps", id="1"), "done"]), tools=[inspect_deps])
    plugin = SubAgentPlugin({"child": child}, shared_deps=["db"])

    result = await plugin.delegate_task(_ctx(db="conn", secret="s3cr3t"), "x", template="child")

    assert result["success"] is True
    assert seen == [["db"]]

  @pytest.mark.asyncio
  async def test_parallel_partial_failure(self):
    plugin = SubAgentPlugin({"ok": Agent(MockModel(responses=["fine"]))})
    result = await plugin.delegate_parallel(_ctx(), [{"task": "a", "template": "ok"}, {"task": "b", "template": "nope"}])

    assert result["success"] is True
    assert result["completed"] == 1
    assert result["failed"] == 1
    assert [r["task"] for r in result["results"]] == ["a", "b"]
    assert result["results"][0]["result"] == "fine"
    assert result["results"][1]["error"].startswith("Template 'nope' not found")

  @pytest.mark.asyncio
  async def test_delegation_inside_parent_run(self):
    child = Agent(MockModel(responses=["42"]), name="calc")
    parent_model = MockModel(responses=[tool_call("delegate_task", {"task": "compute", "template": "calc"}, id="1"), "The child said 42"])
    parent = Agent(parent_model, plugins=[SubAgentPlugin({"calc": child})])

    result = await parent.run("go")

    assert result.output == "The child said 42"
    tool_message = next(m for m in result.messages if m.role == "tool")
    assert '"result": "42"' in tool_message.text

  @pytest.mark.asyncio
  async def test_cancelled_parent_skips_child(self):
    token = CancellationToken()
    token.cancel("user stop")
    model = MockModel(responses=["never"])
    plugin = SubAgentPlugin({"child": Agent(model)})

    result = await plugin.delegate_task(RunContext(cancellation_token=token), "x", template="child")

    assert result == {"success": False, "error": "Sub-agent not started: parent run was cancelled"}
    assert model.call_count == 0

  @pytest.mark.asyncio
  async def test_parent_cancel_stops_running_child(self):
    def step() -> str:
      """Do one unit of work."""
      return "working"

    child = Agent(
      MockModel(responses=[tool_call("step")], delay=0.02),
      tools=[step],
      config=AgentConfig(max_iterations=1000),
    )
    plugin = SubAgentPlugin({"looper": child}, timeout=None)
    token = CancellationToken()

    async def cancel_soon():
      await asyncio.sleep(0.1)
      token.cancel("user stop")

    canceller = asyncio.ensure_future(cancel_soon())
    result = await asyncio.wait_for(
      plugin.delegate_task(RunContext(cancellation_token=token), "loop forever", template="looper"),
      timeout=2,
    )
    await canceller

    assert result["success"] is False
    assert "cancelled" in result["error"].lower()
