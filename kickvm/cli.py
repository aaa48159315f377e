"""CLI entry points for kickvm."""

from __future__ import annotations

import argparse
import platform
import traceback
from pathlib import Path
from typing import Any, Dict, List, Optional

from kickvm.config import build_config_from_args, parse_env
from kickvm.constants import (
    CHECKSUM_TOOL,
    DEFAULT_KS_FILE,
    DEFAULT_KS_URL,
    DEFAULT_OUTPUT_ISO,
    ISO_TOOL_PACKAGES,
    REQUIRED_ISO_TOOLS,
)
from kickvm.exceptions import ManagerError
from kickvm.hypervisor import VBoxManage
from kickvm.iso import BootImageBuilder
from kickvm.network import describe_port, free_port, port_in_use
from kickvm.utils import confirm, log, print_header, set_verbose, which
from kickvm.vm import VMManager


def cmd_build_iso(args: argparse.Namespace) -> int:
    build_cfg = build_config_from_args(
        args.source_iso,
        args.ks_file,
        args.output_iso,
        args.ks_url,
        kickstart_dir=args.ks_dir,
        work_dir=args.work_dir,
        mount_fallback=args.mount_fallback,
    )
    result = BootImageBuilder().build(build_cfg)
    log("SUCCESS", f"Boot ISO created: {result.output_iso}")
    log("INFO", f"Kickstart URL: {result.kickstart_url}")
    log("INFO", f"Kickstart fallback embedded at: /{build_cfg.kickstart_file.name}")
    if not result.checksum_implanted:
        log("WARN", "ISO checksum not implanted")
    return 0


def _vm_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if getattr(args, "vm_name", None):
        overrides["vm_name"] = args.vm_name
    if getattr(args, "http_port", None):
        overrides["host_http_port"] = args.http_port
    if getattr(args, "ks_file", None):
        overrides["kickstart_file"] = str(Path(args.ks_file).expanduser().resolve())
    if getattr(args, "auto_start_http", False):
        overrides["auto_start_http"] = True
    return overrides


def _vm_manager(args: argparse.Namespace) -> VMManager:
    cfg = parse_env(config_path=args.config, overrides=_vm_overrides(args))
    return VMManager(cfg)


def cmd_setup(args: argparse.Namespace) -> int:
    _vm_manager(args).setup(force=args.force)
    return 0


def cmd_start(args: argparse.Namespace) -> int:
    _vm_manager(args).start(assume_yes=args.yes, follow=not args.no_follow)
    return 0


def cmd_stop(args: argparse.Namespace) -> int:
    _vm_manager(args).stop()
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    _vm_manager(args).status()
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Report host dependencies and whether the kickstart HTTP port is free."""
    cfg = parse_env(config_path=args.config, overrides=_vm_overrides(args))
    ok = True
    print_header("Checking dependencies")

    vbox = VBoxManage()
    if vbox.available():
        log("SUCCESS", f"VirtualBox is installed ({vbox.version()})")
    else:
        log("ERROR", "VirtualBox is not installed. Please install VirtualBox to proceed.")
        ok = False

    for tool in REQUIRED_ISO_TOOLS:
        if which(tool):
            log("SUCCESS", f"{tool} is installed")
        else:
            log("ERROR", f"{tool} is not installed (package: {ISO_TOOL_PACKAGES[tool]}); needed by build-iso")
            ok = False
    if which(CHECKSUM_TOOL):
        log("SUCCESS", f"{CHECKSUM_TOOL} is installed")
    else:
        log("WARN", f"{CHECKSUM_TOOL} is not installed (package: {ISO_TOOL_PACKAGES[CHECKSUM_TOOL]}); optional")
    log("SUCCESS", f"Python {platform.python_version()}")

    port = cfg.host_http_port
    print_header("Checking port availability")
    if port_in_use(port):
        log("WARN", f"Port {port} is already in use:")
        holders = describe_port(port)
        if holders:
            print(holders, flush=True)
        if confirm(f"Kill the process using port {port}", assume_yes=args.free_port):
            free_port(port)
            log("SUCCESS", f"Port {port} freed")
        else:
            log("WARN", "You may need to use a different port or manually kill the process")
    else:
        log("SUCCESS", f"Port {port} is available")

    print_header("All checks complete")
    return 0 if ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kickvm", description="Unattended RHEL installs in VirtualBox via kickstart"
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML config file (default: $KICKVM_CONFIG)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug output")
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build-iso", help="Build an ISO whose boot menu fetches the kickstart file")
    build.add_argument("source_iso", help="Original installer ISO")
    build.add_argument("ks_file", nargs="?", default=DEFAULT_KS_FILE, help="Kickstart file name (default: ks.cfg)")
    build.add_argument("output_iso", nargs="?", default=DEFAULT_OUTPUT_ISO, help="Output ISO path")
    build.add_argument("ks_url", nargs="?", default=DEFAULT_KS_URL, help="Kickstart URL injected into the boot line")
    build.add_argument("--ks-dir", default=None, help="Directory holding the kickstart file (default: cwd)")
    build.add_argument("--work-dir", default=None, help="Parent directory for the temporary extraction tree")
    build.add_argument(
        "--mount-fallback", action="store_true", help="Fall back to a sudo loop mount if extraction fails"
    )
    build.set_defaults(func=cmd_build_iso)

    setup = sub.add_parser("setup", help="Create and configure the VirtualBox VM")
    setup.add_argument("vm_name", nargs="?", default=None)
    setup.add_argument("--force", action="store_true", help="Recreate the VM without asking if it exists")
    setup.add_argument("--auto-start-http", action="store_true", help="Start a background kickstart HTTP server")
    setup.set_defaults(func=cmd_setup)

    start = sub.add_parser("start", help="Serve the kickstart, boot the VM and follow its logs")
    start.add_argument("vm_name", nargs="?", default=None)
    start.add_argument("http_port", nargs="?", type=int, default=None)
    start.add_argument("ks_file", nargs="?", default=None)
    start.add_argument("-y", "--yes", action="store_true", help="Restart a running VM without asking")
    start.add_argument("--no-follow", action="store_true", help="Do not follow the serial/HTTP logs")
    start.set_defaults(func=cmd_start)

    stop = sub.add_parser("stop", help="Stop the VM and clean up logs and the HTTP server")
    stop.add_argument("vm_name", nargs="?", default=None)
    stop.set_defaults(func=cmd_stop)

    status = sub.add_parser("status", help="Show the VM state and attached media")
    status.add_argument("vm_name", nargs="?", default=None)
    status.set_defaults(func=cmd_status)

    check = sub.add_parser("check", help="Verify host dependencies and port availability")
    check.add_argument("--free-port", action="store_true", help="Kill whatever holds the HTTP port")
    check.set_defaults(func=cmd_check)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        set_verbose(True)

    try:
        return args.func(args)
    except ManagerError as exc:
        log("ERROR", str(exc))
        return 1
    except KeyboardInterrupt:
        log("WARN", "Interrupted")
        return 130
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        log("ERROR", "This is likely a bug. Please report it with the output above.")
        traceback.print_exc()
        return 1
