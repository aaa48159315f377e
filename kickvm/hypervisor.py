"""Thin wrapper around the VirtualBox management CLI."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional

from kickvm.constants import VBOXMANAGE
from kickvm.exceptions import HypervisorError
from kickvm.models import PortForward
from kickvm.network import render_nat_rule
from kickvm.utils import log, run, which


def parse_machine_readable(output: str) -> dict:
    """Parse ``showvminfo --machinereadable`` key=value output."""
    info = {}
    for line in output.splitlines():
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        info[key.strip().strip('"')] = value.strip().strip('"')
    return info


class VBoxManage:
    def __init__(self, binary: str = VBOXMANAGE) -> None:
        self.binary = binary

    def available(self) -> bool:
        return which(self.binary) is not None

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        cmd = [self.binary, *args]
        try:
            result = run(cmd, check=False, capture_output=True)
        except FileNotFoundError as exc:
            raise HypervisorError(f"VirtualBox ({self.binary}) not found in PATH") from exc
        if check and result.returncode != 0:
            detail = (result.stderr or "").strip()
            raise HypervisorError(f"{self.binary} {args[0]} failed (exit {result.returncode}): {detail}")
        return result

    def version(self) -> str:
        return (self._run("--version").stdout or "").strip()

    def exists(self, name: str) -> bool:
        return self._run("showvminfo", name, check=False).returncode == 0

    def state(self, name: str) -> Optional[str]:
        result = self._run("showvminfo", name, "--machinereadable", check=False)
        if result.returncode != 0:
            return None
        return parse_machine_readable(result.stdout or "").get("VMState")

    def info(self, name: str) -> str:
        return self._run("showvminfo", name).stdout or ""

    def create(self, name: str, os_type: str, base_folder: Path) -> None:
        self._run("createvm", "--name", name, "--ostype", os_type, "--register", "--basefolder", str(base_folder))

    def modify(self, name: str, *args: str) -> None:
        self._run("modifyvm", name, *args)

    def create_disk(self, path: Path, size_mb: int) -> None:
        self._run("createmedium", "disk", "--filename", str(path), "--size", str(size_mb), "--format", "VDI")

    def add_controller(self, name: str, controller: str, bus: str, chipset: str) -> None:
        self._run("storagectl", name, "--name", controller, "--add", bus, "--controller", chipset)

    def attach(self, name: str, controller: str, port: int, device: int, medium_type: str, medium: Path) -> None:
        self._run(
            "storageattach",
            name,
            "--storagectl",
            controller,
            "--port",
            str(port),
            "--device",
            str(device),
            "--type",
            medium_type,
            "--medium",
            str(medium),
        )

    def add_nat_rule(self, name: str, rule: PortForward) -> None:
        self.modify(name, "--natpf1", render_nat_rule(rule))

    def delete_nat_rule(self, name: str, rule_name: str) -> None:
        result = self._run("modifyvm", name, "--natpf1", "delete", rule_name, check=False)
        if result.returncode != 0:
            log("DEBUG", f"NAT rule {rule_name} not present on {name}")

    def start(self, name: str, start_type: str) -> None:
        self._run("startvm", name, "--type", start_type)

    def control(self, name: str, action: str) -> bool:
        """Send a controlvm action; returns False instead of raising when it is rejected."""
        result = self._run("controlvm", name, action, check=False)
        return result.returncode == 0

    def unregister(self, name: str, delete: bool = True) -> None:
        args: List[str] = ["unregistervm", name]
        if delete:
            args.append("--delete")
        self._run(*args)
