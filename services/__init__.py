"""Remote supervision services: execution, probes, escalation and audits."""

__all__ = [
    "DriftAuditor",
    "HealthProbe",
    "KillSwitchController",
    "RemoteExecutor",
    "ReviewOrchestrator",
]


def __getattr__(name: str):
    if name == "RemoteExecutor":
        from services.remote_executor import RemoteExecutor

        return RemoteExecutor
    if name == "HealthProbe":
        from services.health_probes import HealthProbe

        return HealthProbe
    if name == "KillSwitchController":
        from services.kill_switch import KillSwitchController

        return KillSwitchController
    if name == "DriftAuditor":
        from services.drift_auditor import DriftAuditor

        return DriftAuditor
    if name == "ReviewOrchestrator":
        from services.review import ReviewOrchestrator

        return ReviewOrchestrator
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
