"""Tests for locating the agent unit and workspace."""

from __future__ import annotations

from config.settings import AgentSettings
from services.discovery import discover_service, discover_workspace

WORKSPACE = "/home/openclaw/.openclaw/workspaces/main"


def test_discovers_unit_and_workspace(fake_host, target) -> None:
    result = discover_workspace(fake_host, target)

    assert result.found
    assert result.service_name == "openclaw"
    assert result.workspace_dir == WORKSPACE
    assert fake_host.mutating_commands() == []


def test_second_candidate_unit_is_used(fake_host, target) -> None:
    fake_host.units = ("openclaw-gateway",)
    agent = AgentSettings(service_candidates=("openclaw", "openclaw-gateway"))

    assert discover_service(fake_host, target, agent) == "openclaw-gateway"


def test_missing_workspace_is_explained(fake_host, target) -> None:
    fake_host.workspace_dir = None
    fake_host.units = ()

    result = discover_workspace(fake_host, target)

    assert not result.found
    assert result.service_name is None
    assert result.workspace_dir is None
    assert "SOUL.md" in result.reason
    assert "openclaw" in result.reason
