"""Unit tests for server status and payment status guardrails."""

import pytest

from vpsdash.common.state_machine import (
    is_advancing_payment_status,
    is_expected_server_transition,
    normalize_payment_status,
    normalize_server_status,
)


def test_offline_is_reported_as_stopped():
    assert normalize_server_status("offline") == "stopped"
    assert normalize_server_status(" Running ") == "running"


def test_unknown_provider_status_is_normalized():
    assert normalize_server_status("teleporting") == "unknown"
    assert normalize_server_status(None) == "unknown"


def test_modeled_server_transitions():
    assert is_expected_server_transition("provisioning", "running")
    assert is_expected_server_transition("running", "shutting_down")
    assert is_expected_server_transition("stopped", "rebuilding")
    assert not is_expected_server_transition("stopped", "rebooting")


@pytest.mark.parametrize(
    "current, new, advancing",
    [
        ("waiting", "confirming", True),
        ("confirming", "partially_paid", True),
        ("partially_paid", "finished", True),
        ("waiting", "expired", True),
        ("confirmed", "confirming", False),
        ("finished", "partially_paid", False),
        ("expired", "finished", False),
        ("waiting", "waiting", False),
        ("waiting", "mystery", False),
    ],
)
def test_payment_status_only_moves_forward(current, new, advancing):
    assert is_advancing_payment_status(current, new) is advancing


def test_payment_status_normalization():
    assert normalize_payment_status(" FINISHED ") == "finished"
