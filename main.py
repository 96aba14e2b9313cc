"""Command-line entry point for the agent-host supervision control plane."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
import os
import sys
import time
from typing import Any, Callable, Mapping

from config import ConfigController
from config.settings import (
    AgentSettings,
    DriftSettings,
    ExecutorSettings,
    HealthSettings,
    KillSwitchSettings,
    ReviewSettings,
    SecretSettings,
    target_from_config,
)
from core.errors import EscalationBlocked, ExitCode, WardenError
from core.logging import enable_file_logging, logger, set_level
from core.ops_models import ControllerState, RemoteTarget
from core.reports import format_text, to_json


def make_executor(settings: ExecutorSettings):
    """Build the remote executor. Tests replace this with a fake host."""

    from services.remote_executor import RemoteExecutor

    return RemoteExecutor(settings)


@dataclass
class Context:
    """Everything one invocation needs, built once from config and flags."""

    config: dict[str, Any]
    target: RemoteTarget
    args: argparse.Namespace
    executor: Any = None

    @property
    def agent(self) -> AgentSettings:
        return AgentSettings.from_config(self.config)

    def get_executor(self):
        if self.executor is None:
            self.executor = make_executor(ExecutorSettings.from_config(self.config))
        return self.executor


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--host", help="Target host (env CLAWPI_HOST).")
    common.add_argument("--user", help="Login principal on the target (env CLAWPI_USER).")
    common.add_argument("--port", type=int, help="SSH port (env CLAWPI_SSH_PORT).")
    common.add_argument("--connect-timeout", type=float, help="Connect timeout in seconds.")
    common.add_argument(
        "--format",
        choices=("json", "text"),
        default="json",
        help="Report format on stdout.",
    )
    common.add_argument("--record", action="store_true", help="Also record the report in the local sink.")
    common.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr.")

    parser = argparse.ArgumentParser(
        prog="warden",
        description="Supervise, stop and audit the agent running on a remote host.",
    )
    verbs = parser.add_subparsers(dest="command", metavar="VERB", required=True)

    status = verbs.add_parser("status", parents=[common], help="Report target health.")
    status.add_argument("--strict", action="store_true", help="Exit 8 when any sub-check failed.")

    verbs.add_parser("stop", parents=[common], help="Graceful stop through the service manager.")

    for name, text in (
        ("hard-stop", "Terminate every agent process, force-killing survivors."),
        ("shutdown", "Power off the host. Needs physical access to recover."),
    ):
        escalation = verbs.add_parser(name, parents=[common], help=text)
        escalation.add_argument("--yes", action="store_true", help="Confirm without prompting.")

    audit = verbs.add_parser("audit", parents=[common], help="Check tracked files against baselines.")
    audit.add_argument("files", nargs="*", help="Tracked paths (default: drift.tracked_files).")
    audit.add_argument("--fail-on-drift", action="store_true", help="Exit 8 when anything drifted.")

    accept = verbs.add_parser("accept", parents=[common], help="Accept current file contents as baseline.")
    accept.add_argument("files", nargs="*", help="Paths to accept (default: drift.tracked_files).")

    review = verbs.add_parser("review", parents=[common], help="Run the periodic operator review.")
    review.add_argument("--skip-sync", action="store_true", help="Skip the rsync log pull.")

    start = verbs.add_parser("start", parents=[common], help="Start the agent with injected secrets.")
    start.add_argument("--manifest", help="Secret-reference manifest (default: secrets.manifest).")

    verbs.add_parser("diagnostics", parents=[common], help="Check the local control point.")
    return parser


def confirm(prompt: str, assume_yes: bool, stream: Any = None) -> bool:
    """Return True when the operator confirmed; never prompts without a TTY."""

    if assume_yes:
        return True
    stream = stream if stream is not None else sys.stdin
    if not (hasattr(stream, "isatty") and stream.isatty()):
        return False
    sys.stderr.write(f"{prompt} [y/N] ")
    sys.stderr.flush()
    answer = stream.readline().strip().lower()
    return answer in {"y", "yes"}


def emit(ctx: Context, payload: Mapping[str, Any]) -> None:
    if ctx.args.format == "text":
        print(format_text(payload, ctx.agent.gateway_port))
    else:
        print(to_json(payload))
    if ctx.args.record or ctx.config.get("storage", {}).get("record_reports", False):
        from storage.controller import StorageController

        StorageController.get_instance().add_report(ctx.target.host, payload)


def _health_probe(ctx: Context, *, discover: bool = True):
    from services.discovery import discover_service
    from services.health_probes import HealthProbe

    agent = ctx.agent
    service_name = None
    if discover and len(agent.service_candidates) > 1:
        service_name = discover_service(ctx.get_executor(), ctx.target, agent)
    return HealthProbe(
        ctx.get_executor(),
        agent,
        HealthSettings.from_config(ctx.config),
        service_name=service_name,
    )


def _kill_switch(ctx: Context, probe):
    from services.kill_switch import KillSwitchController

    return KillSwitchController(
        ctx.get_executor(),
        probe,
        ctx.target,
        KillSwitchSettings.from_config(ctx.config),
        ctx.agent,
    )


def _auditor(ctx: Context):
    from services.drift_auditor import DriftAuditor

    return DriftAuditor(
        ctx.get_executor(),
        DriftSettings.from_config(ctx.config),
        max_workers=HealthSettings.from_config(ctx.config).max_workers,
    )


def _tracked_paths(ctx: Context) -> tuple[str, ...]:
    from services.discovery import discover_workspace
    from services.drift_auditor import resolve_tracked

    requested = tuple(ctx.args.files) or DriftSettings.from_config(ctx.config).tracked_files
    if all(path.startswith(("/", "~")) for path in requested):
        return resolve_tracked(requested, None)
    discovery = discover_workspace(ctx.get_executor(), ctx.target, ctx.agent)
    if discovery.workspace_dir is None:
        raise WardenError(f"cannot resolve tracked files: {discovery.reason}")
    return resolve_tracked(requested, discovery.workspace_dir)


def _baseline_store(ctx: Context):
    from storage.controller import StorageController

    return StorageController.get_instance().baseline_store(ctx.target.host)


def cmd_status(ctx: Context) -> int:
    report = _health_probe(ctx).probe(ctx.target)
    emit(ctx, report.to_payload())
    if report.incomplete:
        return ExitCode.INTERRUPTED
    if ctx.args.strict:
        report.raise_for_partial()
    return ExitCode.OK


def cmd_stop(ctx: Context) -> int:
    with _kill_switch(ctx, _health_probe(ctx)) as controller:
        result = controller.graceful_stop()
    emit(ctx, result.to_payload())
    return ExitCode.OK if result.state is ControllerState.STOPPED else ExitCode.FAILURE


def cmd_hard_stop(ctx: Context) -> int:
    confirmed = confirm(
        f"Force-kill every agent process on {ctx.target.host}?",
        ctx.args.yes,
    )
    if not confirmed:
        raise EscalationBlocked("hard-stop requires --yes or an interactive confirmation")
    with _kill_switch(ctx, _health_probe(ctx)) as controller:
        result = controller.hard_kill(confirmed=confirmed)
    emit(ctx, result.to_payload())
    return ExitCode.OK if result.state is ControllerState.STOPPED else ExitCode.REMOTE_FAILURE


def cmd_shutdown(ctx: Context) -> int:
    confirmed = confirm(
        f"Power off {ctx.target.host}? It stays off until someone power-cycles it.",
        ctx.args.yes,
    )
    if not confirmed:
        raise EscalationBlocked("shutdown requires --yes or an interactive confirmation")
    with _kill_switch(ctx, _health_probe(ctx, discover=False)) as controller:
        result = controller.host_shutdown(confirmed=confirmed)
    emit(ctx, result.to_payload())
    return ExitCode.OK


def cmd_audit(ctx: Context) -> int:
    tracked = _tracked_paths(ctx)
    entries = _auditor(ctx).audit(ctx.target, tracked, _baseline_store(ctx))
    emit(
        ctx,
        {
            "kind": "drift",
            "timestamp": time.time(),
            "target": ctx.target.to_payload(),
            "entries": [entry.to_payload() for entry in entries],
        },
    )
    if ctx.args.fail_on_drift and any(entry.drifted for entry in entries):
        return ExitCode.ATTENTION
    return ExitCode.OK


def cmd_accept(ctx: Context) -> int:
    tracked = _tracked_paths(ctx)
    hashes = _auditor(ctx).current_hashes(ctx.target, tracked)
    absent = [path for path, content_hash in hashes.items() if content_hash is None]
    if absent:
        raise WardenError(f"cannot accept files that do not exist: {', '.join(absent)}")
    store = _baseline_store(ctx)
    captured_at = time.time()
    accepted = [store.accept(path, hashes[path], captured_at) for path in tracked]
    emit(
        ctx,
        {
            "kind": "accept",
            "timestamp": captured_at,
            "target": ctx.target.to_payload(),
            "accepted": [baseline.to_payload() for baseline in accepted],
        },
    )
    return ExitCode.OK


def _secret_store(ctx: Context):
    from services.secrets.stores import OnePasswordStore

    return OnePasswordStore(SecretSettings.from_config(ctx.config))


def _credential(ctx: Context) -> str:
    return os.environ.get(SecretSettings.from_config(ctx.config).credential_env, "")


def cmd_review(ctx: Context) -> int:
    from services.log_sync import LogSync
    from services.review import ReviewOrchestrator

    secrets = SecretSettings.from_config(ctx.config)
    review_settings = ReviewSettings.from_config(ctx.config)
    orchestrator = ReviewOrchestrator(
        ctx.get_executor(),
        _health_probe(ctx, discover=False),
        _auditor(ctx),
        _baseline_store(ctx),
        secret_store=_secret_store(ctx),
        log_sync=LogSync(review_settings, ExecutorSettings.from_config(ctx.config)),
        agent=ctx.agent,
        drift=DriftSettings.from_config(ctx.config),
        settings=review_settings,
        rw_vault=secrets.rw_vault,
    )
    report = orchestrator.review(ctx.target, credential=_credential(ctx), skip_sync=ctx.args.skip_sync)
    emit(ctx, report.to_payload())
    return ExitCode.OK


def cmd_start(ctx: Context) -> int:
    from services.secrets.launcher import AgentLauncher
    from services.secrets.manifest import load_manifest
    from services.secrets.resolver import SecretResolver

    secrets = SecretSettings.from_config(ctx.config)
    references = load_manifest(ctx.args.manifest or secrets.manifest)
    launcher = AgentLauncher(
        ctx.get_executor(),
        SecretResolver(_secret_store(ctx)),
        _health_probe(ctx),
        ctx.agent,
        timeout_s=KillSwitchSettings.from_config(ctx.config).stop_timeout_s,
    )
    result = launcher.start(ctx.target, references, _credential(ctx))
    emit(ctx, result.to_payload())
    return ExitCode.OK


def cmd_diagnostics(ctx: Context) -> int:
    from config.diagnostics import probe as config_probe
    from core.diagnostics import probe as core_probe
    from diagnostics.runner import format_results, has_failures, run_diagnostics
    from services.diagnostics import probe as services_probe
    from storage.diagnostics import probe as storage_probe

    config_dir = ConfigController.get_instance().paths.config_dir

    def config_check():
        return config_probe(config_dir=config_dir)

    def binaries_check():
        return services_probe(
            ExecutorSettings.from_config(ctx.config),
            SecretSettings.from_config(ctx.config),
            ReviewSettings.from_config(ctx.config),
        )

    def storage_check():
        return storage_probe(config=ctx.config)

    results = run_diagnostics([config_check, core_probe, binaries_check, storage_check])
    if ctx.args.format == "text":
        print(format_results(results))
    else:
        print(to_json({"kind": "diagnostics", "results": [result.to_payload() for result in results]}))
    return ExitCode.FAILURE if has_failures(results) else ExitCode.OK


COMMANDS: dict[str, Callable[[Context], int]] = {
    "status": cmd_status,
    "stop": cmd_stop,
    "hard-stop": cmd_hard_stop,
    "shutdown": cmd_shutdown,
    "audit": cmd_audit,
    "accept": cmd_accept,
    "review": cmd_review,
    "start": cmd_start,
    "diagnostics": cmd_diagnostics,
}


def main(argv: list[str] | None = None) -> int:
    """Application entry point.

    Args:
        argv: Optional list of command-line arguments.

    Returns:
        Process exit code.
    """

    if argv is None:
        argv = sys.argv[1:]

    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return int(exc.code or 0)

    try:
        config = ConfigController.get_instance().get_config()
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return ExitCode.USAGE

    set_level("DEBUG" if args.verbose else str(config.get("logging_level", "INFO")))
    if config.get("file_logging_enabled", False):
        from storage.controller import StorageController

        log_file_path = StorageController.get_instance().get_log_file_path()
        enable_file_logging(log_file_path)
        logger.debug("Writing logs to %s", log_file_path)

    target = target_from_config(
        config,
        host=args.host,
        principal=args.user,
        port=args.port,
        connect_timeout_s=args.connect_timeout,
    )
    ctx = Context(config=config, target=target, args=args)
    try:
        return int(COMMANDS[args.command](ctx))
    except KeyboardInterrupt:
        logger.warning("Interrupted; remote state was not verified after the interrupt.")
        return ExitCode.INTERRUPTED
    except WardenError as exc:
        logger.error("%s", exc)
        return int(exc.exit_code)
    except (ValueError, OSError) as exc:
        logger.error("%s", exc)
        return ExitCode.FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
