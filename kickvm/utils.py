"""Utility functions for kickvm."""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
import time
from pathlib import Path
from typing import List, Optional

from kickvm.constants import _LOG_VERBOSE
from kickvm.exceptions import ManagerError

_verbose = _LOG_VERBOSE


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def log(level: str, message: str) -> None:
    """Lightweight structured logging compatible with existing colour expectation."""
    if level == "DEBUG" and not _verbose:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    stream = sys.stderr if level == "ERROR" else sys.stdout
    print(f"{colour}[{level}]{reset} {message}", file=stream, flush=True)


def print_header(title: str) -> None:
    print("================", flush=True)
    print(f"      {title}", flush=True)
    print("================", flush=True)


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def parse_int(name: str, raw: str, min_val: int = 1, max_val: Optional[int] = None) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise ManagerError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise ManagerError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise ManagerError(f"{name} must be <= {max_val} (got {value})")
    return value


def has_controlling_tty() -> bool:
    """Return True if both stdin and stdout are attached to a TTY."""
    for stream in (sys.stdin, sys.stdout):
        try:
            if not stream.isatty():
                return False
        except (AttributeError, ValueError):
            return False
    return True


def confirm(question: str, assume_yes: bool = False, default: bool = False) -> bool:
    """Ask a y/n question; without a TTY the default answer is used."""
    if assume_yes:
        return True
    if not has_controlling_tty():
        log("INFO", f"{question} (no TTY, answering {'yes' if default else 'no'})")
        return default
    try:
        answer = input(f"{question} (y/n): ")
    except EOFError:
        return default
    return answer.strip().lower() in {"y", "yes"}


def wait_for_path(path: Path, timeout: float = 10.0, interval: float = 0.5) -> bool:
    """Poll for a filesystem path to show up (e.g., the VM's serial log)."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if path.exists():
            return True
        time.sleep(interval)
    return False


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def which(name: str) -> Optional[str]:
    return shutil.which(name)


def make_tree_writable(root: Path) -> None:
    """Add owner-write permission to every entry below root (ISO extracts are read-only)."""
    for dirpath, dirnames, filenames in os.walk(root):
        for name in [dirpath, *(os.path.join(dirpath, entry) for entry in dirnames + filenames)]:
            if os.path.islink(name):
                continue
            mode = os.stat(name).st_mode
            os.chmod(name, mode | 0o200)


def remove_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        log("WARN", f"Failed to remove {path}: {exc}")


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, check=check, text=True, **kwargs)
    return result
