"""Shell command builders for the remote host."""

from __future__ import annotations

import re
import shlex
from typing import Iterable

from services.remote_executor import quote_path

# A non-interactive ssh session has no XDG_RUNTIME_DIR, which systemctl --user
# needs to find the user manager.
_USER_BUS = 'XDG_RUNTIME_DIR="/run/user/$(id -u)"'


def systemctl_user(*args: str) -> str:
    return " ".join([_USER_BUS, "systemctl", "--user", *(shlex.quote(arg) for arg in args)])


def process_regex(patterns: Iterable[str]) -> str:
    return "|".join(re.escape(pattern) for pattern in patterns)


def executable_regex(executables: Iterable[str]) -> str:
    """Match command lines whose first word is one of ``executables``.

    Anchoring to argv[0] keeps the ssh session title (``sshd: user@notty``)
    and the shell running this very command out of the match.
    """

    return f"^([^ ]*/)?({process_regex(executables)})([ -]|$)"


def _matchers(names: Iterable[str], executables: Iterable[str]) -> list[str]:
    names = tuple(names)
    executables = tuple(executables)
    matchers: list[str] = []
    if names:
        matchers.append(f"-x {shlex.quote(process_regex(names))}")
    if executables:
        matchers.append(f"-f {shlex.quote(executable_regex(executables))}")
    return matchers


def pgrep(names: Iterable[str], executables: Iterable[str]) -> str:
    """List agent processes: ``names`` by exact process name, ``executables`` by argv[0]."""

    queries = [f'pgrep -a -u "$(id -un)" {matcher}' for matcher in _matchers(names, executables)]
    if not queries:
        return "true"
    return "{ " + "; ".join(queries) + "; } | sort -un"


def pkill(names: Iterable[str], executables: Iterable[str], signal_name: str) -> str:
    """Signal agent processes; exits 0 when any process was signalled, 1 otherwise."""

    runs = [
        f'pkill -{signal_name} -u "$(id -un)" {matcher} && rc=0;'
        for matcher in _matchers(names, executables)
    ]
    return " ".join(["rc=1;", *runs, 'exit "$rc"'])


# Exit status of sha256sum() when the path does not exist. sha256sum itself
# only exits 0 or 1, and its messages follow the remote locale.
FILE_ABSENT_EXIT = 3


def sha256sum(path: str) -> str:
    quoted = quote_path(path)
    return f"if [ -e {quoted} ]; then sha256sum -- {quoted}; else exit {FILE_ABSENT_EXIT}; fi"


LISTENING_PORTS = "ss -tlnH"
MEMINFO = "cat /proc/meminfo"
UPTIME = "cat /proc/uptime"
REACHABILITY = "true"


def disk_usage(mount: str) -> str:
    return f"df -P -- {shlex.quote(mount)}"


def read_file(path: str) -> str:
    return f"cat -- {quote_path(path)}"
