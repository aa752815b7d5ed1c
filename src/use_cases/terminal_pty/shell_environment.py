"""
Shell Environment

Resolves the shell binary, working directory and environment for a PTY
session so shell startup is deterministic regardless of how the gateway
process itself was launched.
"""

import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from tools.errors import PTYError

REQUIRED_PATH_ENTRIES = [
    "/opt/homebrew/bin",
    "/usr/local/bin",
    "/usr/bin",
    "/bin",
    "/usr/sbin",
    "/sbin",
]

DEFAULT_SHELL = "/bin/zsh"
DEFAULT_TERM = "xterm-256color"
DEFAULT_LANG = "en_US.UTF-8"
DEFAULT_COLS = 80
DEFAULT_ROWS = 24
MIN_TERMINAL_COLS = 30
MIN_TERMINAL_ROWS = 10


@dataclass
class SpawnOptions:
    shell: str
    cwd: str
    env: Dict[str, str]
    cols: int = DEFAULT_COLS
    rows: int = DEFAULT_ROWS


def is_executable(file_path) -> bool:
    if not isinstance(file_path, str) or not file_path.strip():
        return False
    return os.path.isfile(file_path) and os.access(file_path, os.X_OK)


def is_valid_geometry(cols, rows) -> bool:
    """True for integer geometry at or above the 30x10 floor."""
    for value in (cols, rows):
        if isinstance(value, bool) or not isinstance(value, int):
            return False
    return cols >= MIN_TERMINAL_COLS and rows >= MIN_TERMINAL_ROWS


def sanitize_env(env: Mapping[str, Optional[str]]) -> Dict[str, str]:
    """Drop unset entries and coerce everything else to strings."""
    return {key: str(value) for key, value in env.items() if value is not None}


def merge_path(path_value: Optional[str]) -> str:
    """Append the required system directories missing from ``path_value``."""
    existing = [entry for entry in (path_value or "").split(":") if entry]
    for required in REQUIRED_PATH_ENTRIES:
        if required not in existing:
            existing.append(required)
    return ":".join(existing)


def resolve_shell(shell: Optional[str], env: Mapping[str, str]) -> str:
    """
    Turn the configured shell into an executable path.

    ``~/`` is expanded against HOME, paths containing a slash must be
    executable as given, and bare names are searched across PATH.

    Raises:
        PTYError: if no executable shell is found.
    """
    requested = shell.strip() if isinstance(shell, str) and shell.strip() else DEFAULT_SHELL

    if requested.startswith("~/"):
        home = env.get("HOME") or os.path.expanduser("~")
        requested = os.path.join(home, requested[2:])

    if "/" in requested:
        if not is_executable(requested):
            raise PTYError(f"Configured shell is not executable: {requested}")
        return requested

    search_path = env.get("PATH", "")
    for entry in search_path.split(":"):
        if not entry:
            continue
        candidate = os.path.join(entry, requested)
        if is_executable(candidate):
            return candidate

    raise PTYError(f'Configured shell "{requested}" was not found in PATH: {search_path}')


def resolve_cwd(cwd: Optional[str], env: Mapping[str, str]) -> str:
    """First existing directory of: requested, HOME, user home, process cwd, /."""
    try:
        process_cwd = os.getcwd()
    except OSError:
        process_cwd = None

    candidates = [cwd, env.get("HOME"), os.path.expanduser("~"), process_cwd, "/"]
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip() and os.path.isdir(candidate):
            return candidate
    return "/"


def build_environment(overrides: Optional[Mapping[str, Optional[str]]] = None) -> Dict[str, str]:
    merged = sanitize_env({**os.environ, **(overrides or {})})

    merged["HOME"] = merged.get("HOME") or os.path.expanduser("~")
    merged["PATH"] = merge_path(merged.get("PATH"))
    merged["LANG"] = merged.get("LANG") or DEFAULT_LANG
    merged["LC_ALL"] = merged.get("LC_ALL") or merged["LANG"]
    merged["TERM"] = merged.get("TERM") or DEFAULT_TERM
    # No shell-session restore chatter outside the system terminal app
    merged["SHELL_SESSIONS_DISABLE"] = merged.get("SHELL_SESSIONS_DISABLE") or "1"
    # No zsh "%" marker after output lacking a trailing newline
    merged.setdefault("PROMPT_EOL_MARK", "")
    return merged


def prepare_spawn_options(
    shell: Optional[str],
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, Optional[str]]] = None,
    cols: int = DEFAULT_COLS,
    rows: int = DEFAULT_ROWS,
) -> SpawnOptions:
    """Resolve everything needed to spawn the shell."""
    merged_env = build_environment(env)
    resolved_shell = resolve_shell(shell, merged_env)
    merged_env["SHELL"] = resolved_shell

    return SpawnOptions(
        shell=resolved_shell,
        cwd=resolve_cwd(cwd, merged_env),
        env=merged_env,
        cols=cols,
        rows=rows,
    )
