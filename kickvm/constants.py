"""Global constants and defaults for kickvm."""

from __future__ import annotations

import os
import re
from pathlib import Path

TRUTHY = {"1", "true", "yes", "on"}
CONFIG_ENV = "KICKVM_CONFIG"

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in TRUTHY

# Boot image builder
DEFAULT_KS_FILE = "ks.cfg"
DEFAULT_OUTPUT_ISO = "rhel-auto-ks.iso"
DEFAULT_KS_URL = "http://10.0.2.2:8080/ks.cfg"
DEFAULT_VOLUME_ID = "RHEL-AUTO"

REQUIRED_ISO_TOOLS = ("xorriso", "isoinfo")
CHECKSUM_TOOL = "implantisomd5"
ISO_TOOL_PACKAGES = {
    "xorriso": "xorriso",
    "isoinfo": "genisoimage",
    "implantisomd5": "isomd5sum",
}

GRUB_CONFIG_NAME = "grub.cfg"
ISOLINUX_CONFIG_NAME = "isolinux.cfg"
BACKUP_SUFFIX = ".orig"

GRUB_KERNEL_RE = re.compile(r"^[ \t]*linux(efi)?[ \t]")
GRUB_TIMEOUT_RE = re.compile(r"^set timeout=.*$")
GRUB_TIMEOUT_LINE = "set timeout=5"
ISOLINUX_APPEND_RE = re.compile(r"^[ \t]*append[ \t]")
ISOLINUX_TIMEOUT_RE = re.compile(r"^timeout.*$")
# isolinux counts in tenths of a second
ISOLINUX_TIMEOUT_LINE = "timeout 50"

SERIAL_CONSOLE_ARG = "console=ttyS0,115200n8"
TEXT_MODE_ARG = "inst.text"

BIOS_BOOT_IMAGE = "isolinux/isolinux.bin"
BIOS_BOOT_CATALOG = "isolinux/boot.cat"
EFI_BOOT_IMAGE = "images/efiboot.img"
HYBRID_MBR_TEMPLATE = "isolinux/isohdpfx.bin"

# VirtualBox
VBOXMANAGE = "VBoxManage"
DEFAULT_VM_NAME = "rhl"
DEFAULT_OS_TYPE = "RedHat_64"
DEFAULT_BASE_PATH = Path.home() / "VMS"
DEFAULT_ISO_PATH = Path.home() / "Downloads" / "rhel-9.4-x86_64-dvd.iso"
DEFAULT_START_TYPE = "separate"
SUPPORTED_NETWORK_TYPES = {"nat", "bridged"}
SUPPORTED_START_TYPES = {"gui", "headless", "separate", "sdl"}
SATA_CONTROLLER = "SATA Controller"
IDE_CONTROLLER = "IDE Controller"
# States from which "start" can boot the VM without forcing a poweroff first
STARTABLE_STATES = {"poweroff", "aborted", "saved"}

SERIAL_LOG_TEMPLATE = "/tmp/vbox-{name}-serial.log"
HTTP_LOG_PATH = Path("/tmp/vbox-http-server.log")
# VirtualBox NAT exposes the host at this address inside the guest
NAT_HOST_ADDRESS = "10.0.2.2"
VRDE_ADDRESS = "localhost:3389"

PORT_SETTLE_SECONDS = 1.0
HTTP_READY_TIMEOUT = 10.0
SERIAL_LOG_WAIT = 30.0
POWEROFF_SETTLE_SECONDS = 3.0
STOP_SETTLE_SECONDS = 2.0

KICKSTART_DOCS_URL = (
    "https://access.redhat.com/documentation/en-us/red_hat_enterprise_linux/9/html-single/"
    "performing_an_advanced_rhel_9_installation/index#kickstart-reference"
)

INSTALLER_MARKERS = ("Starting installer", "anaconda")
