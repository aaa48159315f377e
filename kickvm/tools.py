"""External ISO tooling (xorriso, isoinfo, implantisomd5) used by the image builder."""

from __future__ import annotations

import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional

from kickvm.constants import CHECKSUM_TOOL
from kickvm.exceptions import ToolError
from kickvm.models import ToolResult
from kickvm.utils import log, run, which


def _stderr_tail(stderr: Optional[str], lines: int = 5) -> str:
    if not stderr:
        return ""
    return "\n".join(stderr.strip().splitlines()[-lines:])


def parse_volume_id(isoinfo_output: str) -> Optional[str]:
    """Extract the volume id from ``isoinfo -d`` output."""
    for line in isoinfo_output.splitlines():
        if line.startswith("Volume id:"):
            value = line.split(":", 1)[1].strip()
            return value or None
    return None


class IsoTools:
    """Runs the ISO mastering tools. Tests swap in a fake with the same methods."""

    def __init__(self, xorriso: str = "xorriso", isoinfo: str = "isoinfo", implant: str = CHECKSUM_TOOL) -> None:
        self.xorriso = xorriso
        self.isoinfo = isoinfo
        self.implant = implant

    def which(self, name: str) -> Optional[str]:
        return which(name)

    def extract(self, iso: Path, dest: Path) -> None:
        """Unpack the whole image without root privileges."""
        cmd = [self.xorriso, "-osirrox", "on", "-indev", str(iso), "-extract", "/", str(dest)]
        try:
            run(cmd, capture_output=True)
        except subprocess.CalledProcessError as exc:
            raise ToolError(f"xorriso extraction failed (exit {exc.returncode}): {_stderr_tail(exc.stderr)}") from exc
        except FileNotFoundError as exc:
            raise ToolError(f"xorriso not found: {exc}") from exc

    def mount_copy(self, iso: Path, dest: Path) -> None:
        """Loop-mount the image read-only (needs sudo) and copy its tree into dest."""
        with tempfile.TemporaryDirectory(prefix="kickvm-mnt-") as mountpoint:
            try:
                run(["sudo", "mount", "-o", "loop,ro", str(iso), mountpoint], capture_output=True)
            except (subprocess.CalledProcessError, FileNotFoundError) as exc:
                raise ToolError(f"Loop mount of {iso} failed: {exc}") from exc
            try:
                shutil.copytree(mountpoint, dest, symlinks=True, dirs_exist_ok=True)
            except (OSError, shutil.Error) as exc:
                raise ToolError(f"Copying mounted image failed: {exc}") from exc
            finally:
                umount = run(["sudo", "umount", mountpoint], check=False, capture_output=True)
                if umount.returncode != 0:
                    log("WARN", f"Failed to unmount {mountpoint}: {_stderr_tail(umount.stderr)}")

    def read_volume_id(self, iso: Path) -> Optional[str]:
        try:
            result = run([self.isoinfo, "-d", "-i", str(iso)], capture_output=True)
        except (subprocess.CalledProcessError, FileNotFoundError) as exc:
            log("DEBUG", f"isoinfo failed on {iso}: {exc}")
            return None
        return parse_volume_id(result.stdout or "")

    def master(self, args: List[str]) -> ToolResult:
        """Run ``xorriso -as mkisofs`` with args; never raises on tool failure."""
        try:
            result = run([self.xorriso, "-as", "mkisofs", *args], check=False, capture_output=True)
        except FileNotFoundError as exc:
            return ToolResult(returncode=127, stderr=str(exc))
        return ToolResult(returncode=result.returncode, stderr=_stderr_tail(result.stderr))

    def implant_checksum(self, iso: Path) -> bool:
        try:
            run([self.implant, str(iso)], capture_output=True)
        except (subprocess.CalledProcessError, FileNotFoundError) as exc:
            log("WARN", f"{self.implant} failed on {iso}: {exc}")
            return False
        return True
