"""
Unit tests for ContextUpdate, the patch tools return to change dependencies.
"""

import pytest

from agentrun.tool import ContextUpdate
from agentrun.tool.update import deep_merge


@pytest.mark.unit
class TestContextUpdate:
  def test_operations_apply_in_order(self):
    update = ContextUpdate().set("user", "ada").append("log", "a").append("log", "b").delete("token")
    deps = update.apply({"token": "secret", "keep": 1})
    assert deps == {"keep": 1, "user": "ada", "log": ["a", "b"]}

  def test_apply_does_not_mutate_input(self):
    original = {"log": ["a"], "prefs": {"theme": "dark"}}
    ContextUpdate().append("log", "b").merge("prefs", {"lang": "en"}).apply(original)
    assert original == {"log": ["a"], "prefs": {"theme": "dark"}}

  def test_merge_is_deep(self):
    deps = ContextUpdate().merge("prefs", {"ui": {"font": 12}}).apply({"prefs": {"ui": {"theme": "dark"}, "lang": "en"}})
    assert deps["prefs"] == {"ui": {"theme": "dark", "font": 12}, "lang": "en"}

  def test_merge_replaces_non_dict(self):
    assert ContextUpdate().merge("x", {"a": 1}).apply({"x": 5}) == {"x": {"a": 1}}

  def test_merge_requires_mapping(self):
    with pytest.raises(TypeError):
      ContextUpdate().merge("x", [1, 2])

  def test_append_wraps_scalar(self):
    assert ContextUpdate().append("x", 2).apply({"x": 1}) == {"x": [1, 2]}

  def test_set_copies_value(self):
    value = {"nested": [1]}
    deps = ContextUpdate().set("v", value).apply({})
    value["nested"].append(2)
    assert deps["v"] == {"nested": [1]}

  def test_delete_missing_key_is_noop(self):
    assert ContextUpdate().delete("missing").apply({"a": 1}) == {"a": 1}

  def test_from_dict_and_add(self):
    combined = ContextUpdate.from_dict({"a": 1}) + ContextUpdate().set("a", 2)
    assert combined.keys == ["a", "a"]
    assert combined.apply({}) == {"a": 2}

  def test_is_empty(self):
    assert ContextUpdate().is_empty
    assert not ContextUpdate().set("a", 1).is_empty

  def test_deep_merge(self):
    assert deep_merge({"a": {"b": 1}}, {"a": {"c": 2}, "d": 3}) == {"a": {"b": 1, "c": 2}, "d": 3}
