"""Tests for the allowlisted collaborator factory loader."""

import pytest

from chakravarti.factory import is_allowed_module, load_factory


def test_is_allowed_exact_and_submodule():
    allowed = ["acme.chakravarti"]
    assert is_allowed_module("acme.chakravarti", allowed)
    assert is_allowed_module("acme.chakravarti.collab", allowed)
    assert not is_allowed_module("acme.chakravarti_evil", allowed)
    assert not is_allowed_module("acme", allowed)


def test_load_factory():
    factory = load_factory("chakravarti.handlers.base:Collaborators", ["chakravarti.handlers"])
    assert factory.__name__ == "Collaborators"


def test_rejects_malformed_path():
    with pytest.raises(ValueError, match="module:function"):
        load_factory("chakravarti.handlers.base.Collaborators", ["chakravarti"])


def test_rejects_module_outside_allowlist():
    with pytest.raises(ValueError, match="not in allowlist"):
        load_factory("os:system", ["chakravarti"])


def test_empty_allowlist_rejects_everything():
    with pytest.raises(ValueError, match="not in allowlist"):
        load_factory("chakravarti.handlers.base:Collaborators", [])


def test_missing_module():
    with pytest.raises(ImportError, match="Cannot import factory module"):
        load_factory("chakravarti.nope:build", ["chakravarti"])


def test_missing_function():
    with pytest.raises(AttributeError, match="not found"):
        load_factory("chakravarti.handlers.base:build_everything", ["chakravarti"])


def test_not_callable():
    with pytest.raises(TypeError, match="not callable"):
        load_factory("chakravarti.handlers.base:TEST_COMMANDS", ["chakravarti"])
