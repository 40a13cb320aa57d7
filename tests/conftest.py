"""pytest configuration and shared fixtures."""

import pytest

from msg_invoke import Message


@pytest.fixture
def message():
    """String message with a couple of headers."""
    return Message("foo", {"id": "42", "tenant": "acme"})


@pytest.fixture
def json_headers():
    """Headers marking the payload as JSON."""
    return {"content_type": "application/json"}


@pytest.fixture
def probe():
    """Call-count probe for the structured invocation path."""
    calls = []

    def record(candidate, unit):
        calls.append(candidate.name)

    record.calls = calls
    return record
