"""Kickstart-injecting boot image builder."""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

from kickvm.bootcfg import find_boot_configs, patch_boot_config
from kickvm.constants import (
    BIOS_BOOT_CATALOG,
    BIOS_BOOT_IMAGE,
    CHECKSUM_TOOL,
    EFI_BOOT_IMAGE,
    HYBRID_MBR_TEMPLATE,
    ISO_TOOL_PACKAGES,
    REQUIRED_ISO_TOOLS,
)
from kickvm.exceptions import (
    ExtractionFailed,
    MasteringFailed,
    MissingDependency,
    MissingInput,
    NoBootConfigFound,
    ToolError,
)
from kickvm.models import BuildConfig, BuildResult
from kickvm.tools import IsoTools
from kickvm.utils import log, make_tree_writable


def _require_readable_file(path: Path, label: str) -> None:
    if not path.is_file():
        raise MissingInput(f"{label} not found: {path}")
    if not os.access(path, os.R_OK):
        raise MissingInput(f"{label} is not readable: {path}")


def _clear_directory(path: Path) -> None:
    make_tree_writable(path)
    for entry in path.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()


def _output_valid(path: Path) -> bool:
    return path.is_file() and path.stat().st_size > 0


class BootImageBuilder:
    """Remasters an installer ISO so its first boot entry fetches a kickstart file."""

    def __init__(self, tools: Optional[IsoTools] = None) -> None:
        self.tools = tools if tools is not None else IsoTools()

    def check_preconditions(self, config: BuildConfig) -> bool:
        """Validate inputs and tools. Returns whether checksum implanting is possible."""
        _require_readable_file(config.source_iso, "Source ISO")
        _require_readable_file(config.kickstart_file, "Kickstart file")
        if config.output_iso.resolve() == config.source_iso.resolve():
            raise MissingInput(f"Output ISO must not overwrite the source ISO: {config.output_iso}")
        for tool in REQUIRED_ISO_TOOLS:
            if self.tools.which(tool) is None:
                raise MissingDependency(
                    f"'{tool}' not found. Install it (package: {ISO_TOOL_PACKAGES.get(tool, tool)})."
                )
        if self.tools.which(CHECKSUM_TOOL) is None:
            log("WARN", f"{CHECKSUM_TOOL} not found, checksum step will be skipped")
            return False
        return True

    def build(self, config: BuildConfig) -> BuildResult:
        can_implant = self.check_preconditions(config)
        if config.work_parent is not None:
            config.work_parent.mkdir(parents=True, exist_ok=True)

        log("INFO", f"Creating automated installation ISO from {config.source_iso}")
        with tempfile.TemporaryDirectory(prefix="kickvm-iso-", dir=config.work_parent) as tmpdir:
            work_dir = Path(tmpdir)
            self._extract(config, work_dir)
            make_tree_writable(work_dir)

            shutil.copy2(config.kickstart_file, work_dir / config.kickstart_file.name)
            log("INFO", f"Embedded kickstart fallback at /{config.kickstart_file.name}")

            boot_configs = find_boot_configs(work_dir)
            if not boot_configs:
                raise NoBootConfigFound("Could not find grub.cfg or isolinux.cfg in ISO")

            log("INFO", "Patching bootloader config to auto-use Kickstart...")
            for boot_config in boot_configs:
                log("INFO", f"Modifying boot configuration: {boot_config.path.relative_to(work_dir)}")
                patch_boot_config(boot_config, config.kickstart_url)
            if not any(boot_config.patched for boot_config in boot_configs):
                raise NoBootConfigFound("No kernel command line found in any bootloader configuration")

            volume_id = self.tools.read_volume_id(config.source_iso) or config.default_volume_id
            log("INFO", f"Volume label: {volume_id}")

            hybrid_mbr = self._master(config, work_dir, volume_id)

        result = BuildResult(
            output_iso=config.output_iso,
            kickstart_url=config.kickstart_url,
            volume_id=volume_id,
            boot_configs=boot_configs,
            hybrid_mbr=hybrid_mbr,
        )
        if can_implant:
            log("INFO", "Adding ISO checksum...")
            result.checksum_implanted = self.tools.implant_checksum(config.output_iso)
        return result

    def _extract(self, config: BuildConfig, work_dir: Path) -> None:
        log("INFO", "Extracting ISO (no root required)...")
        try:
            self.tools.extract(config.source_iso, work_dir)
            return
        except ToolError as exc:
            if not config.mount_fallback:
                raise ExtractionFailed(f"ISO extraction failed: {exc}") from exc
            log("WARN", f"Direct extraction failed ({exc}); falling back to loop mount")
        # a partial extraction leaves read-only entries behind
        _clear_directory(work_dir)
        try:
            self.tools.mount_copy(config.source_iso, work_dir)
        except ToolError as exc:
            raise ExtractionFailed(f"ISO extraction failed: {exc}") from exc

    def mastering_args(self, work_dir: Path, output: Path, volume_id: str, hybrid_mbr: Optional[Path]) -> List[str]:
        args = ["-V", volume_id, "-r", "-J", "-joliet-long"]
        if (work_dir / BIOS_BOOT_IMAGE).exists():
            args += [
                "-b", BIOS_BOOT_IMAGE,
                "-c", BIOS_BOOT_CATALOG,
                "-no-emul-boot", "-boot-load-size", "4", "-boot-info-table",
            ]
        else:
            log("WARN", f"{BIOS_BOOT_IMAGE} missing; output will not boot on legacy BIOS")
        if (work_dir / EFI_BOOT_IMAGE).exists():
            args += ["-eltorito-alt-boot", "-e", EFI_BOOT_IMAGE, "-no-emul-boot"]
        else:
            log("WARN", f"{EFI_BOOT_IMAGE} missing; output will not boot on UEFI")
        if hybrid_mbr is not None:
            args += ["-isohybrid-mbr", str(hybrid_mbr)]
        args += ["-o", str(output), str(work_dir)]
        return args

    def _master(self, config: BuildConfig, work_dir: Path, volume_id: str) -> bool:
        """Master the output image. Returns whether the hybrid MBR was embedded."""
        output = config.output_iso
        if not (work_dir / BIOS_BOOT_IMAGE).exists() and not (work_dir / EFI_BOOT_IMAGE).exists():
            raise MasteringFailed(
                f"Neither {BIOS_BOOT_IMAGE} nor {EFI_BOOT_IMAGE} found in the extracted image; "
                "the result would not be bootable"
            )
        output.parent.mkdir(parents=True, exist_ok=True)
        if output.exists():
            output.unlink()

        mbr_template = work_dir / HYBRID_MBR_TEMPLATE
        if mbr_template.is_file():
            log("INFO", "Rebuilding hybrid (BIOS+UEFI) ISO with isohybrid MBR...")
            result = self.tools.master(self.mastering_args(work_dir, output, volume_id, mbr_template))
            if result.returncode == 0 and _output_valid(output):
                log("SUCCESS", f"Boot ISO created: {output}")
                return True
            log("WARN", "Hybrid MBR mastering did not produce an image; rebuilding without it")
            if result.stderr:
                log("DEBUG", result.stderr)
            output.unlink(missing_ok=True)
        else:
            log("INFO", f"{HYBRID_MBR_TEMPLATE} not present; rebuilding (BIOS+UEFI) ISO without hybrid MBR...")

        result = self.tools.master(self.mastering_args(work_dir, output, volume_id, None))
        if result.returncode != 0 or not _output_valid(output):
            output.unlink(missing_ok=True)
            detail = f": {result.stderr}" if result.stderr else ""
            raise MasteringFailed(f"xorriso failed to write {output} (exit {result.returncode}){detail}")
        log("SUCCESS", f"Boot ISO created: {output}")
        return False
