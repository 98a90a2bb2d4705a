"""Tests for logging context propagation."""

import pytest

from deliveryq.logging.context import (
    clear_log_context,
    get_log_context,
    log_context,
    pop_log_context,
    push_log_context,
)


def test_empty_context():
    """Test that context starts empty."""
    assert get_log_context() == {}


def test_push_and_pop():
    token = push_log_context(cycle_id="c0ffee")
    assert get_log_context() == {"cycle_id": "c0ffee"}

    pop_log_context(token)
    assert get_log_context() == {}


def test_nested_context_merges_and_restores():
    """Test nested scopes merge fields and restore the outer scope on exit."""
    with log_context(cycle_id="c0ffee"):
        with log_context(queue_item_id="ab12"):
            assert get_log_context() == {"cycle_id": "c0ffee", "queue_item_id": "ab12"}
        assert get_log_context() == {"cycle_id": "c0ffee"}
    assert get_log_context() == {}


def test_inner_scope_overrides_field():
    with log_context(batch_key="outer"):
        with log_context(batch_key="inner"):
            assert get_log_context()["batch_key"] == "inner"
        assert get_log_context()["batch_key"] == "outer"


def test_context_restored_when_block_raises():
    """Test the previous context is restored even if the block raises."""
    with pytest.raises(RuntimeError):
        with log_context(cycle_id="c0ffee"):
            raise RuntimeError("boom")

    assert get_log_context() == {}


def test_get_log_context_returns_copy():
    with log_context(cycle_id="c0ffee"):
        snapshot = get_log_context()
        snapshot["cycle_id"] = "changed"
        assert get_log_context()["cycle_id"] == "c0ffee"


def test_clear_log_context():
    push_log_context(cycle_id="c0ffee")
    clear_log_context()
    assert get_log_context() == {}

