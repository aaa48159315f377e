"""Data models for kickvm."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, NamedTuple, Optional

from kickvm.constants import DEFAULT_VOLUME_ID, NAT_HOST_ADDRESS


class PortForward(NamedTuple):
    name: str
    protocol: str
    host_port: int
    guest_port: int


class ToolResult(NamedTuple):
    returncode: int
    stderr: str


@dataclass
class BuildConfig:
    source_iso: Path
    kickstart_file: Path
    output_iso: Path
    kickstart_url: str
    work_parent: Optional[Path] = None
    mount_fallback: bool = False
    default_volume_id: str = DEFAULT_VOLUME_ID


@dataclass
class BootConfigFile:
    path: Path
    style: str  # "grub" or "isolinux"
    backup: Path
    patched: bool = False
    timeout_changed: bool = False


@dataclass
class BuildResult:
    output_iso: Path
    kickstart_url: str
    volume_id: str
    boot_configs: List[BootConfigFile] = field(default_factory=list)
    hybrid_mbr: bool = False
    checksum_implanted: bool = False


@dataclass
class VMConfig:
    vm_name: str
    os_type: str
    cpus: int
    memory_mb: int
    disk_size_mb: int
    network_type: str  # "nat" or "bridged"
    base_path: Path
    iso_path: Path
    host_ssh_port: int
    guest_ssh_port: int
    host_http_port: int
    guest_http_port: int
    hostname: str
    kickstart_file: Path
    auto_start_http: bool
    serial_log: Path
    http_log: Path
    bridge_adapter: Optional[str] = None
    disk_path: Optional[Path] = None
    vram_mb: int = 32
    start_type: str = "separate"
    ssh_user: str = "root"

    def __post_init__(self):
        if self.disk_path is None:
            self.disk_path = self.home_dir / f"{self.vm_name}.vdi"

    @property
    def home_dir(self) -> Path:
        return self.base_path / self.vm_name

    @property
    def kickstart_url(self) -> str:
        return f"http://{NAT_HOST_ADDRESS}:{self.host_http_port}/{self.kickstart_file.name}"

    def port_forwards(self) -> List[PortForward]:
        return [
            PortForward("guestssh", "tcp", self.host_ssh_port, self.guest_ssh_port),
            PortForward("guesthttp", "tcp", self.host_http_port, self.guest_http_port),
        ]
