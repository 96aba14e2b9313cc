"""Locate the agent's service unit and workspace on the host."""

from __future__ import annotations

from dataclasses import dataclass
import posixpath
from typing import Any

from config.settings import AgentSettings
from core.logging import logger as LOGGER
from core.ops_models import RemoteTarget
from services import remote_commands
from services.remote_executor import RemoteExecutor, quote_path


@dataclass(frozen=True)
class DiscoveryResult:
    """Where the agent lives. ``found`` means both the unit and the workspace were located."""

    found: bool
    service_name: str | None
    workspace_dir: str | None
    reason: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "found": self.found,
            "service_name": self.service_name,
            "workspace_dir": self.workspace_dir,
            "reason": self.reason,
        }


def find_marker_command(home_dir: str, marker: str, max_depth: int = 3) -> str:
    return (
        f"find {quote_path(home_dir)} -maxdepth {int(max_depth)} -type f "
        f"-name {quote_path(marker)} -print 2>/dev/null | sort | head -n 1"
    )


def discover_service(
    executor: RemoteExecutor,
    target: RemoteTarget,
    agent: AgentSettings | None = None,
    *,
    timeout_s: float = 15.0,
) -> str | None:
    """Return the first candidate user unit that systemd has loaded."""

    agent = agent or AgentSettings()
    for candidate in agent.service_candidates:
        result = executor.execute(
            target,
            remote_commands.systemctl_user("show", "-p", "LoadState", "--value", candidate),
            timeout=timeout_s,
        )
        if result.ok and result.stdout.strip() == "loaded":
            return candidate
    return None


def discover_workspace(
    executor: RemoteExecutor,
    target: RemoteTarget,
    agent: AgentSettings | None = None,
    *,
    timeout_s: float = 15.0,
) -> DiscoveryResult:
    """Check the candidate user units, then look for the workspace marker file.

    Raises:
        RemoteConnectionError: Target unreachable.
        RemoteTimeoutError: A lookup got no answer in time.
    """

    agent = agent or AgentSettings()
    service_name = discover_service(executor, target, agent, timeout_s=timeout_s)

    result = executor.execute(
        target,
        find_marker_command(agent.home_dir, agent.workspace_marker),
        timeout=timeout_s,
    )
    marker_path = result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""
    workspace_dir = posixpath.dirname(marker_path) if marker_path else None

    missing: list[str] = []
    if service_name is None:
        missing.append(f"no loaded user unit among {', '.join(agent.service_candidates)}")
    if workspace_dir is None:
        missing.append(f"no {agent.workspace_marker} under {agent.home_dir}")
    reason = "; ".join(missing) if missing else f"{service_name} with workspace {workspace_dir}"
    LOGGER.debug("[Discovery] %s: %s", target.host, reason)
    return DiscoveryResult(
        found=not missing,
        service_name=service_name,
        workspace_dir=workspace_dir,
        reason=reason,
    )
