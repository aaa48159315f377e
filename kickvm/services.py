"""Auxiliary processes (kickstart HTTP server) for kickvm."""

from __future__ import annotations

import subprocess
import sys
import time
from pathlib import Path
from typing import List, Optional

try:
    import requests  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("requests is required but not installed") from exc

from kickvm.constants import HTTP_READY_TIMEOUT
from kickvm.exceptions import ManagerError
from kickvm.utils import ensure_directory, log


def http_server_command(directory: Path, port: int) -> List[str]:
    return [sys.executable, "-m", "http.server", str(port), "--directory", str(directory)]


def stop_process(proc: subprocess.Popen, timeout: float = 5.0) -> None:
    """Terminate a child process, escalating to kill if it does not exit in time."""
    if proc.poll() is None:
        proc.terminate()
    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()


class HttpServer:
    """Static file server for the kickstart directory, owned by a ``with`` block."""

    def __init__(self, directory: Path, port: int, log_path: Path) -> None:
        self.directory = directory
        self.port = port
        self.log_path = log_path
        self.process: Optional[subprocess.Popen] = None

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process is not None else None

    def start(self) -> None:
        if self.process is not None:
            return
        ensure_directory(self.log_path.parent)
        log("INFO", f"Starting HTTP server on port {self.port} serving {self.directory}")
        with open(self.log_path, "w") as log_file:
            try:
                self.process = subprocess.Popen(
                    http_server_command(self.directory, self.port),
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                )
            except OSError as exc:
                raise ManagerError(f"Failed to start HTTP server: {exc}") from exc
        time.sleep(0.5)
        if self.process.poll() is not None:
            code = self.process.returncode
            self.process = None
            raise ManagerError(f"HTTP server exited prematurely (code {code}); see {self.log_path}")
        log("INFO", f"HTTP server started (PID: {self.process.pid})")

    def wait_ready(self, url: str, timeout: float = HTTP_READY_TIMEOUT, interval: float = 0.5) -> bool:
        """Poll ``url`` until the server answers it with a 2xx status."""
        deadline = time.time() + timeout
        while time.time() < deadline:
            try:
                response = requests.get(url, timeout=2)
            except requests.RequestException:
                pass
            else:
                if response.ok:
                    log("SUCCESS", f"Kickstart reachable at {url}")
                    return True
                log("WARN", f"{url} answered HTTP {response.status_code}")
                return False
            time.sleep(interval)
        log("WARN", f"HTTP server did not answer {url} within {int(timeout)}s")
        return False

    def stop(self) -> None:
        if self.process is None:
            return
        log("INFO", "Stopping HTTP server...")
        stop_process(self.process)
        self.process = None

    def __enter__(self) -> "HttpServer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


def spawn_detached(directory: Path, port: int, log_path: Path) -> int:
    """Start an HTTP server that keeps running after kickvm exits. Returns its PID."""
    ensure_directory(log_path.parent)
    with open(log_path, "w") as log_file:
        try:
            proc = subprocess.Popen(
                http_server_command(directory, port),
                stdout=log_file,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            raise ManagerError(f"Failed to start HTTP server: {exc}") from exc
    return proc.pid
