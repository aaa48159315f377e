"""Shared test fixtures: VM config, clean environment and a fake ISO tool runner."""

from __future__ import annotations

import json
import shutil
import textwrap
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from kickvm.config import ENV_FIELDS
from kickvm.constants import CONFIG_ENV
from kickvm.exceptions import ToolError
from kickvm.models import ToolResult, VMConfig

GRUB_CFG = textwrap.dedent(
    """\
    set default="1"

    function load_video {
      insmod all_video
    }

    set timeout=60
    ### END /etc/grub.d/00_header ###

    search --no-floppy --set=root -l 'RHEL-10-0-BaseOS-x86_64'

    menuentry 'Install Red Hat Enterprise Linux 10.0' --class red --class gnu-linux --class os {
    \tlinuxefi /images/pxeboot/vmlinuz inst.stage2=hd:LABEL=RHEL-10-0-BaseOS-x86_64 quiet
    \tinitrdefi /images/pxeboot/initrd.img
    }
    menuentry 'Test this media & install Red Hat Enterprise Linux 10.0' --class red --class gnu-linux --class os {
    \tlinuxefi /images/pxeboot/vmlinuz inst.stage2=hd:LABEL=RHEL-10-0-BaseOS-x86_64 rd.live.check quiet
    \tinitrdefi /images/pxeboot/initrd.img
    }
    """
)

ISOLINUX_CFG = textwrap.dedent(
    """\
    default vesamenu.c32
    timeout 600

    label linux
      menu label ^Install Red Hat Enterprise Linux 9.4
      kernel vmlinuz
      append initrd=initrd.img inst.stage2=hd:LABEL=RHEL-9-4-0-BaseOS-x86_64 quiet

    label check
      menu label Test this ^media & install Red Hat Enterprise Linux 9.4
      kernel vmlinuz
      append initrd=initrd.img inst.stage2=hd:LABEL=RHEL-9-4-0-BaseOS-x86_64 rd.live.check quiet
    """
)


class FakeIsoTools:
    """Stands in for IsoTools: "extracts" a prepared directory and snapshots what would be mastered."""

    def __init__(
        self,
        tree: Path,
        volume_id: Optional[str] = "RHEL-10-0-BaseOS-x86_64",
        missing: tuple = (),
        extract_error: Optional[str] = None,
        partial_extract: bool = False,
        mount_error: Optional[str] = None,
        master_outcomes: Optional[List[str]] = None,
        implant_ok: bool = True,
    ) -> None:
        self.tree = tree
        self.volume_id = volume_id
        self.missing = set(missing)
        self.extract_error = extract_error
        self.partial_extract = partial_extract
        self.dest_empty_on_mount: Optional[bool] = None
        self.mount_error = mount_error
        self.master_outcomes = list(master_outcomes or [])
        self.implant_ok = implant_ok
        self.calls: List[tuple] = []
        self.master_calls: List[List[str]] = []
        self.snapshots: List[Dict[str, bytes]] = []
        self.work_dirs: List[Path] = []

    def which(self, name: str) -> Optional[str]:
        return None if name in self.missing else f"/usr/bin/{name}"

    def _copy_tree(self, dest: Path) -> None:
        shutil.copytree(self.tree, dest, dirs_exist_ok=True)
        for path in dest.rglob("*"):
            if path.is_file():
                path.chmod(0o444)
        self.work_dirs.append(dest)

    def _write_partial_tree(self, dest: Path) -> None:
        stale = dest / "isolinux" / "partial.tmp"
        stale.parent.mkdir(parents=True, exist_ok=True)
        stale.write_bytes(b"\x00" * 16)
        stale.chmod(0o444)
        stale.parent.chmod(0o555)

    def extract(self, iso: Path, dest: Path) -> None:
        self.calls.append(("extract", iso, dest))
        if self.partial_extract:
            self._write_partial_tree(dest)
        if self.extract_error:
            raise ToolError(self.extract_error)
        self._copy_tree(dest)

    def mount_copy(self, iso: Path, dest: Path) -> None:
        self.calls.append(("mount_copy", iso, dest))
        self.dest_empty_on_mount = not any(dest.iterdir())
        if self.mount_error:
            raise ToolError(self.mount_error)
        self._copy_tree(dest)

    def read_volume_id(self, iso: Path) -> Optional[str]:
        self.calls.append(("read_volume_id", iso))
        return self.volume_id

    def master(self, args: List[str]) -> ToolResult:
        self.master_calls.append(list(args))
        outcome = self.master_outcomes.pop(0) if self.master_outcomes else "ok"
        output = Path(args[args.index("-o") + 1])
        work_dir = Path(args[-1])
        if outcome == "fail":
            return ToolResult(returncode=32, stderr="xorriso : FAILURE : Cannot open -isohybrid-mbr file")
        if outcome == "empty":
            output.write_bytes(b"")
            return ToolResult(returncode=0, stderr="")
        snapshot = {
            str(path.relative_to(work_dir)): path.read_bytes() for path in work_dir.rglob("*") if path.is_file()
        }
        self.snapshots.append(snapshot)
        output.write_text(json.dumps(sorted(snapshot)))
        return ToolResult(returncode=0, stderr="")

    def implant_checksum(self, iso: Path) -> bool:
        self.calls.append(("implant_checksum", iso))
        return self.implant_ok


def _write(path: Path, content) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content)


@pytest.fixture
def iso_tree(tmp_path) -> Path:
    """Extracted contents of a RHEL-like DVD with both GRUB and isolinux configs."""
    root = tmp_path / "iso-tree"
    _write(root / "EFI" / "BOOT" / "grub.cfg", GRUB_CFG)
    _write(root / "isolinux" / "isolinux.cfg", ISOLINUX_CFG)
    _write(root / "isolinux" / "isolinux.bin", b"\x00isolinux")
    _write(root / "isolinux" / "isohdpfx.bin", b"\x33\xed" * 216)
    _write(root / "images" / "efiboot.img", b"\x00efi")
    _write(root / "images" / "pxeboot" / "vmlinuz", b"kernel")
    _write(root / ".treeinfo", "[general]\nfamily = Red Hat Enterprise Linux\n")
    return root


@pytest.fixture
def build_inputs(tmp_path):
    """Source ISO and kickstart file on disk."""
    source = tmp_path / "rhel-10.0-x86_64-dvd.iso"
    source.write_bytes(b"CD001" * 64)
    ks_dir = tmp_path / "ks"
    ks_dir.mkdir()
    kickstart = ks_dir / "ks.cfg"
    kickstart.write_text("text\nlang en_US.UTF-8\nrootpw --lock\nreboot\n")
    return source, kickstart


@pytest.fixture
def default_vm_config(tmp_path) -> VMConfig:
    """Return a minimal VMConfig with sensible defaults."""
    iso = tmp_path / "rhel.iso"
    iso.write_bytes(b"iso")
    kickstart = tmp_path / "ks.cfg"
    kickstart.write_text("text\n")
    return VMConfig(
        vm_name="test-vm",
        os_type="RedHat_64",
        cpus=2,
        memory_mb=4096,
        disk_size_mb=32768,
        network_type="nat",
        base_path=tmp_path / "VMS",
        iso_path=iso,
        host_ssh_port=4242,
        guest_ssh_port=22,
        host_http_port=8080,
        guest_http_port=80,
        hostname="test-host",
        kickstart_file=kickstart,
        auto_start_http=False,
        serial_log=tmp_path / "serial.log",
        http_log=tmp_path / "http.log",
    )


@pytest.fixture
def mock_env(monkeypatch):
    """Helper to set environment variables for tests."""

    def _set(**kwargs):
        for key, value in kwargs.items():
            if value is None:
                monkeypatch.delenv(key, raising=False)
            else:
                monkeypatch.setenv(key, str(value))

    return _set


@pytest.fixture
def clean_env(monkeypatch):
    """Clear all environment variables that parse_env() reads."""
    for key in [*ENV_FIELDS, CONFIG_ENV]:
        monkeypatch.delenv(key, raising=False)
