"""
Unit tests for ToolDefinition, the @tool decorator and ToolRegistry.

Covers schema generation from signatures, RunContext injection, execution
policy defaults, invoking sync and async handlers, and registry lookups.
"""

from typing import List, Optional

import pytest
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from agentrun.exceptions import ConfigurationError
from agentrun.tool import RunContext, ToolDefinition, ToolRegistry, clean_tool_name, tool


class Address(BaseModel):
  city: str
  zip_code: Optional[str] = None


@pytest.mark.unit
class TestFromCallable:
  def test_schema_from_type_hints(self):
    def search(query: str, limit: int = 10, tags: Optional[List[str]] = None) -> str:
      """Search the index.

      Longer explanation that should not end up in the description.
      """
      return query

    definition = ToolDefinition.from_callable(search)
    assert definition.name == "search"
    assert definition.description == "Search the index."
    props = definition.parameters["properties"]
    assert props["query"]["type"] == "string"
    assert props["limit"]["default"] == 10
    assert definition.parameters["required"] == ["query"]
    assert "title" not in definition.parameters

  def test_context_parameter_is_hidden(self):
    def lookup(ctx: RunContext, key: str) -> str:
      return ctx.get(key)

    definition = ToolDefinition.from_callable(lookup)
    assert definition.takes_context
    assert list(definition.parameters["properties"]) == ["key"]

  def test_context_detected_by_annotation(self):
    def lookup(run: RunContext, key: str) -> str:
      return key

    assert ToolDefinition.from_callable(lookup).takes_context

  def test_nested_models_in_schema(self):
    def ship(address: Address) -> str:
      return address.city

    definition = ToolDefinition.from_callable(ship)
    assert "$defs" in definition.parameters

  def test_policy_defaults(self):
    def noop() -> None:
      pass

    definition = ToolDefinition.from_callable(noop)
    assert definition.requires_approval is False
    assert definition.max_retries == 1
    assert definition.timeout == 30.0

  def test_invalid_name_rejected(self):
    with pytest.raises(PydanticValidationError):
      ToolDefinition(name="has space")

  def test_invalid_timeout_rejected(self):
    with pytest.raises(PydanticValidationError):
      ToolDefinition(name="t", timeout=0)

  def test_definitions_are_frozen(self):
    definition = ToolDefinition(name="t")
    with pytest.raises(PydanticValidationError):
      definition.name = "other"

  def test_with_approval_returns_copy(self):
    definition = ToolDefinition(name="t")
    gated = definition.with_approval()
    assert gated.requires_approval
    assert not definition.requires_approval


@pytest.mark.unit
class TestToolDecorator:
  def test_bare_decorator(self):
    @tool
    def add(a: int, b: int) -> int:
      """Add two numbers."""
      return a + b

    assert isinstance(add, ToolDefinition)
    assert add.description == "Add two numbers."

  def test_decorator_with_policy(self):
    @tool(name="rm", requires_approval=True, max_retries=0, timeout=5)
    async def delete_file(path: str) -> str:
      return path

    assert delete_file.name == "rm"
    assert delete_file.requires_approval
    assert delete_file.max_retries == 0
    assert delete_file.timeout == 5

  @pytest.mark.asyncio
  async def test_invoke_sync_handler(self):
    @tool
    def add(a: int, b: int) -> int:
      return a + b

    assert await add.invoke(RunContext(), {"a": 2, "b": 3}) == 5

  @pytest.mark.asyncio
  async def test_invoke_async_handler_with_context(self):
    @tool
    async def whoami(ctx: RunContext) -> str:
      return f"{ctx.agent_name}:{ctx.get('user')}"

    context = RunContext(deps={"user": "ada"}, agent_name="bot")
    assert await whoami.invoke(context, {}) == "bot:ada"

  @pytest.mark.asyncio
  async def test_invoke_without_handler(self):
    with pytest.raises(RuntimeError):
      await ToolDefinition(name="empty").invoke(RunContext(), {})


@pytest.mark.unit
class TestToolRegistry:
  def _add(self, a: int, b: int) -> int:
    return a + b

  def test_register_callables_and_definitions(self):
    registry = ToolRegistry([self._add, ToolDefinition(name="ping")])
    assert registry.names() == ["_add", "ping"]
    assert len(registry) == 2
    assert "ping" in registry

  def test_duplicate_names_rejected(self):
    registry = ToolRegistry([ToolDefinition(name="ping")])
    with pytest.raises(ConfigurationError):
      registry.register(ToolDefinition(name="ping"))

  def test_replace(self):
    registry = ToolRegistry([ToolDefinition(name="ping")])
    registry.replace(ToolDefinition(name="ping", description="new"))
    assert registry.get("ping").description == "new"

  def test_lookup_cleans_leaked_quotes(self):
    registry = ToolRegistry([ToolDefinition(name="add")])
    assert registry.get('add"}') is not None
    assert clean_tool_name('add"}') == "add"

  def test_unknown_tool(self):
    assert ToolRegistry().get("missing") is None
    assert "missing" not in ToolRegistry()

  def test_non_callable_rejected(self):
    with pytest.raises(ConfigurationError):
      ToolRegistry([42])
