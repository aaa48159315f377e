"""Install progress detection from the serial console and HTTP access logs."""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from kickvm.constants import INSTALLER_MARKERS

SERIAL = "SERIAL"
HTTP = "HTTP"


def classify(label: str, line: str, kickstart_name: str = "ks.cfg") -> Optional[str]:
    """Return a notice when a log line marks an installation milestone."""
    if label == SERIAL and any(marker in line for marker in INSTALLER_MARKERS):
        return "INSTALLER DETECTED - Installation in progress"
    if label == HTTP and f"GET /{kickstart_name}" in line:
        return "KICKSTART FETCHED - Automated installation running!"
    return None


class _Tail:
    def __init__(self, path: Path) -> None:
        self.path = path
        self.handle = None
        self.inode: Optional[int] = None
        self.buffer = ""

    def _open(self) -> bool:
        try:
            self.handle = open(self.path, "r", errors="replace")
        except FileNotFoundError:
            return False
        self.inode = os.fstat(self.handle.fileno()).st_ino
        self.buffer = ""
        return True

    def _replaced(self) -> bool:
        try:
            stat = os.stat(self.path)
        except FileNotFoundError:
            return False
        if stat.st_ino != self.inode:
            return True
        return stat.st_size < self.handle.tell()

    def read_lines(self) -> List[str]:
        if self.handle is None and not self._open():
            return []
        if self._replaced():
            self.close()
            if not self._open():
                return []
        chunk = self.handle.read()
        if not chunk:
            return []
        self.buffer += chunk
        *complete, self.buffer = self.buffer.split("\n")
        return [line.rstrip("\r") for line in complete]

    def close(self) -> None:
        if self.handle is not None:
            self.handle.close()
            self.handle = None


class LogFollower:
    """Poll several log files and yield their new lines, like ``tail -F`` on each."""

    def __init__(self, sources: Dict[str, Path], interval: float = 0.5) -> None:
        self.interval = interval
        self._tails = {label: _Tail(path) for label, path in sources.items()}

    def poll(self) -> List[Tuple[str, str]]:
        lines: List[Tuple[str, str]] = []
        for label, tail in self._tails.items():
            lines.extend((label, line) for line in tail.read_lines())
        return lines

    def follow(self, keep_going=lambda: True) -> Iterator[Tuple[str, str]]:
        try:
            while keep_going():
                batch = self.poll()
                if not batch:
                    time.sleep(self.interval)
                    continue
                yield from batch
        finally:
            self.close()

    def close(self) -> None:
        for tail in self._tails.values():
            tail.close()
