"""Serialize reports for stdout: JSON for machines, short text for people."""

from __future__ import annotations

import json
from typing import Any, Mapping

from core.logging import redaction_filter


def to_json(payload: Mapping[str, Any]) -> str:
    # Scrub as a last line of defence; payloads never carry secret values.
    return redaction_filter.scrub(json.dumps(payload, indent=2, sort_keys=True))


def _format_bytes(value: int | None) -> str:
    if value is None:
        return "n/a"
    size = float(value)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if size < 1024 or unit == "GiB":
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GiB"


def _format_uptime(seconds: float | None) -> str:
    if seconds is None:
        return "n/a"
    days, rest = divmod(int(seconds), 86400)
    hours, rest = divmod(rest, 3600)
    return f"{days}d {hours}h {rest // 60}m"


def health_lines(payload: Mapping[str, Any], gateway_port: int | None = None) -> list[str]:
    target = payload.get("target", {})
    processes = payload.get("processes")
    ports = payload.get("listening_ports")
    disk = payload.get("disk_used_percent")
    temp = payload.get("cpu_temperature_c")
    lines = [
        f"Target:      {target.get('principal')}@{target.get('host')}:{target.get('port')}",
        f"Service:     {payload.get('service_state')}",
        f"Processes:   {'n/a' if processes is None else len(processes)}",
    ]
    if ports is None:
        lines.append("Ports:       n/a")
    else:
        lines.append(f"Ports:       {', '.join(str(p) for p in ports) or 'none'}")
        if gateway_port is not None:
            state = "listening" if gateway_port in ports else "not listening"
            lines.append(f"Gateway:     {gateway_port} {state}")
    lines.extend(
        [
            f"Disk used:   {'n/a' if disk is None else f'{disk:.0f}%'}",
            f"CPU temp:    {'n/a' if temp is None else f'{temp:.1f} C'}",
            f"Memory free: {_format_bytes(payload.get('memory_free_bytes'))}",
            f"Uptime:      {_format_uptime(payload.get('uptime_s'))}",
        ]
    )
    for error in payload.get("errors", []):
        lines.append(f"  ! {error['check']}: {error['message']}")
    if payload.get("incomplete"):
        lines.append("  ! collection interrupted")
    return lines


def drift_lines(entries: list[Mapping[str, Any]]) -> list[str]:
    if not entries:
        return ["No tracked files."]
    return [f"{entry['classification']:<10} {entry['path']}" for entry in entries]


def format_text(payload: Mapping[str, Any], gateway_port: int | None = None) -> str:
    """Render a report payload as a short operator summary."""

    kind = payload.get("kind")
    lines: list[str] = []
    if kind == "health":
        lines = health_lines(payload, gateway_port)
    elif kind == "transition":
        lines = [
            f"{payload['action']}: {payload['state']} ({payload['message']})",
        ]
        if payload.get("already_in_state"):
            lines.append("Already in the requested state; nothing was sent.")
        if payload.get("report"):
            lines.extend(health_lines(payload["report"], gateway_port))
    elif kind == "drift":
        lines = drift_lines(payload.get("entries", []))
    elif kind == "accept":
        lines = [f"accepted   {entry['path']} {entry['content_hash'][:12]}" for entry in payload.get("accepted", [])]
    elif kind == "start":
        lines = [f"start {payload['service']}: {payload['message']}"]
        if payload.get("injected"):
            lines.append(f"Injected: {', '.join(payload['injected'])}")
        lines.extend(f"  ! {warning}" for warning in payload.get("warnings", []))
    elif kind == "review":
        lines = _review_lines(payload, gateway_port)
    else:
        return to_json(payload)
    return redaction_filter.scrub("\n".join(lines))


def _review_lines(payload: Mapping[str, Any], gateway_port: int | None) -> list[str]:
    lines = ["== 1. Log sync =="]
    sync = payload.get("sync")
    lines.append("skipped" if sync is None else f"{sync['message']} ({sync['local_dir']})")

    lines.append("== 2. Config drift ==")
    discovery = payload.get("discovery")
    if discovery and discovery.get("workspace_dir"):
        lines.append(f"Workspace: {discovery['workspace_dir']}")
    lines.extend(drift_lines(payload.get("drift", [])))

    lines.append("== 3. Read-write vault ==")
    vault = payload.get("vault")
    if vault is None:
        lines.append("skipped")
    else:
        lines.append(f"{vault['vault']}: {vault['item_count']} item(s), {vault['message']}")
        lines.extend(f"  - {item['title']} ({item['updated_at'] or 'unknown'})" for item in vault["items"])

    lines.append("== 4. Service health ==")
    health = payload.get("health")
    lines.extend(["unavailable"] if health is None else health_lines(health, gateway_port))

    lines.append("== 5. Manual checks ==")
    lines.extend(f"[ ] {check}" for check in payload.get("manual_checks", []))

    for error in payload.get("errors", []):
        lines.append(f"! {error['section']}: {error['message']}")
    return lines
