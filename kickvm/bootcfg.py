"""Bootloader configuration discovery and patching.

Installer images ship a GRUB config (``grub.cfg``, used for UEFI and on newer
releases for BIOS too) and, on older releases, an ``isolinux.cfg`` for legacy
BIOS boot. Only the first kernel command line of each file is extended with
the kickstart parameters; the remaining menu entries (rescue, media check)
keep their original arguments.
"""

from __future__ import annotations

import os
import re
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from kickvm.constants import (
    BACKUP_SUFFIX,
    GRUB_CONFIG_NAME,
    GRUB_KERNEL_RE,
    GRUB_TIMEOUT_LINE,
    GRUB_TIMEOUT_RE,
    ISOLINUX_APPEND_RE,
    ISOLINUX_CONFIG_NAME,
    ISOLINUX_TIMEOUT_LINE,
    ISOLINUX_TIMEOUT_RE,
    SERIAL_CONSOLE_ARG,
    TEXT_MODE_ARG,
)
from kickvm.models import BootConfigFile
from kickvm.utils import log

BOOT_CONFIG_STYLES: Dict[str, str] = {
    "grub": GRUB_CONFIG_NAME,
    "isolinux": ISOLINUX_CONFIG_NAME,
}

_KERNEL_LINE_PATTERNS = {
    "grub": GRUB_KERNEL_RE,
    "isolinux": ISOLINUX_APPEND_RE,
}

_TIMEOUT_RULES: Dict[str, Tuple[re.Pattern, str]] = {
    "grub": (GRUB_TIMEOUT_RE, GRUB_TIMEOUT_LINE),
    "isolinux": (ISOLINUX_TIMEOUT_RE, ISOLINUX_TIMEOUT_LINE),
}


def kickstart_args(kickstart_url: str) -> str:
    """Kernel parameters that fetch the kickstart and route the installer to the serial port."""
    return f"inst.ks={kickstart_url} {TEXT_MODE_ARG} {SERIAL_CONSOLE_ARG}"


def find_first(root: Path, filename: str) -> Optional[Path]:
    """Return the first regular file called ``filename`` below root, walking in sorted order."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        if filename in filenames:
            candidate = Path(dirpath) / filename
            if candidate.is_file() and not candidate.is_symlink():
                return candidate
    return None


def find_boot_configs(root: Path) -> List[BootConfigFile]:
    configs: List[BootConfigFile] = []
    for style, filename in BOOT_CONFIG_STYLES.items():
        path = find_first(root, filename)
        if path is None:
            log("DEBUG", f"No {filename} found in {root}")
            continue
        configs.append(BootConfigFile(path=path, style=style, backup=path.with_name(path.name + BACKUP_SUFFIX)))
    return configs


def _split_lines(text: str) -> List[str]:
    """Split on ``\\n`` only, keeping terminators."""
    lines = [line + "\n" for line in text.split("\n")]
    lines[-1] = lines[-1][:-1]
    if not lines[-1]:
        lines.pop()
    return lines


def _split_terminator(line: str) -> Tuple[str, str]:
    body = line.rstrip("\r\n")
    return body, line[len(body):]


def append_to_first_kernel_line(text: str, style: str, args: str) -> Tuple[str, bool]:
    """Append ``args`` to the first kernel line of ``text``. Returns (text, patched)."""
    pattern = _KERNEL_LINE_PATTERNS[style]
    lines = _split_lines(text)
    for index, line in enumerate(lines):
        body, terminator = _split_terminator(line)
        if pattern.match(body):
            lines[index] = f"{body} {args}{terminator}"
            return "".join(lines), True
    return text, False


def set_menu_timeout(text: str, style: str) -> Tuple[str, bool]:
    """Rewrite every top-level timeout directive. Returns (text, changed)."""
    pattern, replacement = _TIMEOUT_RULES[style]
    changed = False
    lines = _split_lines(text)
    for index, line in enumerate(lines):
        body, terminator = _split_terminator(line)
        if pattern.match(body):
            lines[index] = replacement + terminator
            changed = True
    return "".join(lines), changed


def patch_boot_config(config: BootConfigFile, kickstart_url: str) -> BootConfigFile:
    """Back up the config file, then patch it in place."""
    shutil.copy2(config.path, config.backup)
    original = config.path.read_bytes().decode("utf-8", errors="surrogateescape")

    patched, config.patched = append_to_first_kernel_line(original, config.style, kickstart_args(kickstart_url))
    if not config.patched:
        log("WARN", f"No kernel command line found in {config.path}; boot entries left unchanged")

    patched, config.timeout_changed = set_menu_timeout(patched, config.style)
    if not config.timeout_changed:
        log("DEBUG", f"No timeout directive in {config.path}")

    config.path.write_bytes(patched.encode("utf-8", errors="surrogateescape"))
    return config
