"""Start the agent with secrets injected into its service environment."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
import posixpath
import shlex
from typing import Any, Iterable

from config.settings import AgentSettings
from core.errors import RemoteCommandFailed
from core.logging import logger as LOGGER, redaction_filter
from core.ops_models import HealthReport, RemoteTarget, ServiceState
from services.health_probes import HealthProbe
from services.remote_executor import RemoteExecutor, quote_path
from services.secrets.models import SecretReference
from services.secrets.resolver import SecretResolver

# Reads "NAME base64value" lines from stdin, hands the decoded values to the
# user service manager, starts the unit and drops the values from the
# manager again. Values only ever travel through pipes and the environment.
LAUNCH_WRAPPER = """#!/bin/sh
set -eu
unit="$1"
names=""
while read -r name value; do
  [ -n "$name" ] || continue
  # The trailing x keeps command substitution from eating final newlines.
  decoded=$(printf '%s' "$value" | base64 -d && printf x)
  decoded=${decoded%x}
  export "$name=$decoded"
  names="$names $name"
done
export XDG_RUNTIME_DIR="/run/user/$(id -u)"
status=0
if [ -n "$names" ]; then
  systemctl --user import-environment $names
fi
systemctl --user start "$unit" || status=$?
if [ -n "$names" ]; then
  systemctl --user unset-environment $names
fi
exit "$status"
"""


@dataclass(frozen=True)
class StartResult:
    """Outcome of a secret-injected start. Carries variable names, never values."""

    service_name: str
    started: bool
    already_running: bool
    injected: tuple[str, ...] = ()
    report: HealthReport | None = None
    message: str = ""
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def to_payload(self) -> dict[str, Any]:
        return {
            "kind": "start",
            "service": self.service_name,
            "started": self.started,
            "already_running": self.already_running,
            "injected": list(self.injected),
            "message": self.message,
            "warnings": list(self.warnings),
            "report": None if self.report is None else self.report.to_payload(),
        }


def encode_environment(values: dict[str, str]) -> str:
    return "".join(
        f"{name} {base64.b64encode(value.encode('utf-8')).decode('ascii')}\n"
        for name, value in sorted(values.items())
    )


class AgentLauncher:
    """Resolve secrets and start the agent service with them in its environment."""

    def __init__(
        self,
        executor: RemoteExecutor,
        resolver: SecretResolver,
        probe: HealthProbe,
        agent: AgentSettings | None = None,
        *,
        timeout_s: float = 60.0,
    ) -> None:
        self._executor = executor
        self._resolver = resolver
        self._probe = probe
        self._agent = agent or AgentSettings()
        self._timeout_s = timeout_s

    def start(
        self,
        target: RemoteTarget,
        references: Iterable[SecretReference],
        credential: str,
    ) -> StartResult:
        """Start the service unless it already runs.

        Raises:
            CredentialInvalid: The credential was rejected.
            SecretUnavailable: A secret could not be resolved; nothing was started.
            RemoteCommandFailed: Installing the wrapper or starting the unit failed.
        """

        service = self._probe.service_name
        before = self._probe.probe(target)
        if before.service_state is ServiceState.RUNNING:
            LOGGER.info("[Secrets] %s already running on %s; not restarting.", service, target.host)
            return StartResult(
                service_name=service,
                started=False,
                already_running=True,
                report=before,
                message="service already running",
            )

        references = tuple(references)
        resolved = self._resolver.resolve(references, credential) if references else {}
        names = tuple(sorted(resolved))
        values = list(resolved.values())
        redaction_filter.register(values)
        try:
            self._install_wrapper(target)
            payload = encode_environment(resolved)
            wrapper = quote_path(self._agent.launch_wrapper_path)
            command = f"{wrapper} {shlex.quote(service)}"
            LOGGER.info("[Secrets] Starting %s on %s with %d injected variable(s).", service, target.host, len(names))
            result = self._executor.execute(
                target,
                command,
                timeout=self._timeout_s,
                stdin=payload,
                retry=False,
            )
            payload = ""
            if not result.ok:
                raise RemoteCommandFailed(command, result.exit_code, redaction_filter.scrub(result.stderr))
        finally:
            redaction_filter.unregister(values)
            resolved.clear()
            values.clear()

        after = self._probe.probe(target)
        warnings: tuple[str, ...] = ()
        if after.service_state is not ServiceState.RUNNING:
            warnings = (f"service reports {after.service_state.value} right after start",)
        return StartResult(
            service_name=service,
            started=True,
            already_running=False,
            injected=names,
            report=after,
            message="service started",
            warnings=warnings,
        )

    def _install_wrapper(self, target: RemoteTarget) -> None:
        path = self._agent.launch_wrapper_path
        directory = posixpath.dirname(path) or "."
        quoted = quote_path(path)
        command = f"mkdir -p {quote_path(directory)} && cat > {quoted} && chmod 700 {quoted}"
        result = self._executor.execute(
            target,
            command,
            timeout=self._timeout_s,
            stdin=LAUNCH_WRAPPER,
            retry=False,
        )
        if not result.ok:
            raise RemoteCommandFailed(command, result.exit_code, result.stderr)
        LOGGER.debug("[Secrets] Launch wrapper installed at %s.", path)
