"""Unit tests for the best-effort call wrapper."""

import logging

from services.best_effort import attempt


def test_success_returns_value():
    result = attempt("add", lambda a, b: a + b, 2, b=3)

    assert result.ok is True
    assert result.value == 5
    assert result.error is None
    assert result.operation == "add"


def test_failure_is_reported_not_raised(caplog):
    def explode():
        raise RuntimeError("remote went away")

    with caplog.at_level(logging.WARNING, logger="services.best_effort"):
        result = attempt("revoke old item", explode)

    assert result.ok is False
    assert result.error == "remote went away"
    assert "Best-effort revoke old item failed" in caplog.text
