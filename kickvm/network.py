"""Host networking helpers: address detection, port eviction and NAT rules."""

from __future__ import annotations

import errno
import os
import signal
import socket
import time
from typing import List

from kickvm.constants import PORT_SETTLE_SECONDS
from kickvm.models import PortForward
from kickvm.utils import log, run


def render_nat_rule(rule: PortForward) -> str:
    """Render a VirtualBox ``--natpf`` rule (name,proto,host-ip,host-port,guest-ip,guest-port)."""
    return f"{rule.name},{rule.protocol},,{rule.host_port},,{rule.guest_port}"


def detect_host_ip(default: str = "127.0.0.1") -> str:
    """Return the source address the host uses for outbound traffic."""
    try:
        result = run(["ip", "route", "get", "1.1.1.1"], check=False, capture_output=True)
    except FileNotFoundError:
        return default
    if result.returncode != 0:
        return default
    tokens = (result.stdout or "").split()
    for index, token in enumerate(tokens[:-1]):
        if token == "src":
            return tokens[index + 1]
    return default


def port_in_use(port: int, host: str = "127.0.0.1") -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError as exc:
            if exc.errno == errno.EADDRINUSE:
                return True
            if exc.errno in (errno.EACCES, errno.EPERM):
                # privileged port: bind cannot tell, ask lsof instead
                return bool(pids_on_port(port))
            raise
    return False


def pids_on_port(port: int) -> List[int]:
    """PIDs holding ``port`` according to lsof; empty when lsof is unavailable."""
    try:
        result = run(["lsof", "-ti", f":{port}"], check=False, capture_output=True)
    except FileNotFoundError:
        log("WARN", "lsof not found; cannot inspect port holders")
        return []
    pids: List[int] = []
    for line in (result.stdout or "").splitlines():
        line = line.strip()
        if line.isdigit():
            pid = int(line)
            if pid not in pids:
                pids.append(pid)
    return pids


def describe_port(port: int) -> str:
    try:
        result = run(["lsof", "-i", f":{port}"], check=False, capture_output=True)
    except FileNotFoundError:
        return ""
    return (result.stdout or "").strip()


def free_port(port: int, sig: int = signal.SIGKILL, settle: float = PORT_SETTLE_SECONDS) -> List[int]:
    """Terminate whatever holds ``port``. Returns the PIDs that were signalled."""
    pids = [pid for pid in pids_on_port(port) if pid != os.getpid()]
    if not pids:
        return []
    log("INFO", f"Freeing port {port}...")
    killed: List[int] = []
    for pid in pids:
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            log("DEBUG", f"PID {pid} already exited")
            continue
        except PermissionError:
            log("WARN", f"Not permitted to signal PID {pid} holding port {port}")
            continue
        killed.append(pid)
    if killed:
        time.sleep(settle)
    return killed

