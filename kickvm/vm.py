"""VirtualBox VM lifecycle: setup, start with kickstart serving, stop."""

from __future__ import annotations

import time
from typing import Optional

from kickvm.constants import (
    IDE_CONTROLLER,
    KICKSTART_DOCS_URL,
    NAT_HOST_ADDRESS,
    POWEROFF_SETTLE_SECONDS,
    SATA_CONTROLLER,
    SERIAL_CONSOLE_ARG,
    SERIAL_LOG_WAIT,
    STARTABLE_STATES,
    STOP_SETTLE_SECONDS,
    TEXT_MODE_ARG,
    VRDE_ADDRESS,
)
from kickvm.exceptions import ManagerError, MissingInput
from kickvm.hypervisor import VBoxManage
from kickvm.models import VMConfig
from kickvm.network import detect_host_ip, free_port
from kickvm.services import HttpServer, spawn_detached
from kickvm.status import HTTP, SERIAL, LogFollower, classify
from kickvm.utils import confirm, ensure_directory, log, print_header, remove_file, wait_for_path


class VMManager:
    def __init__(self, vm_config: VMConfig, vbox: Optional[VBoxManage] = None) -> None:
        self.cfg = vm_config
        self.vbox = vbox if vbox is not None else VBoxManage()

    def _require_vbox(self) -> None:
        if not self.vbox.available():
            raise ManagerError("VirtualBox (VBoxManage) not found in PATH.")

    def _require_vm(self) -> None:
        if not self.vbox.exists(self.cfg.vm_name):
            raise ManagerError(f"VM '{self.cfg.vm_name}' does not exist. Run 'kickvm setup' first")

    # ------------------------------------------------------------------ setup

    def setup(self, force: bool = False) -> bool:
        """Create and configure the VM. Returns False when an existing VM was kept."""
        cfg = self.cfg
        self._require_vbox()
        if not cfg.iso_path.is_file():
            raise MissingInput(f"ISO not found at: {cfg.iso_path}")

        ensure_directory(cfg.home_dir)

        if self.vbox.exists(cfg.vm_name):
            if not confirm(f"VM '{cfg.vm_name}' already exists. Delete and recreate", assume_yes=force):
                log("INFO", "Exiting without changes.")
                return False
            log("INFO", "Removing existing VM...")
            self.vbox.unregister(cfg.vm_name, delete=True)

        print_header("Creating VM")
        self.vbox.create(cfg.vm_name, cfg.os_type, cfg.base_path)

        log("INFO", "Configuring VM hardware...")
        self.vbox.modify(
            cfg.vm_name,
            "--memory", str(cfg.memory_mb),
            "--cpus", str(cfg.cpus),
            "--vram", str(cfg.vram_mb),
            "--ioapic", "on",
            "--acpi", "on",
            "--rtcuseutc", "on",
            "--chipset", "ich9",
            "--graphicscontroller", "vmsvga",
        )
        self._configure_network()
        self._configure_storage()

        log("INFO", "Optimizing VM (disable audio/USB, clipboard/drag&drop disabled)...")
        self.vbox.modify(
            cfg.vm_name, "--audio", "none", "--usb", "off", "--clipboard", "disabled", "--draganddrop", "disabled"
        )
        # COM1 to a file so the installer console (console=ttyS0) can be followed on the host
        self.vbox.modify(cfg.vm_name, "--uart1", "0x3F8", "4", "--uartmode1", "file", str(cfg.serial_log))

        if cfg.network_type == "nat":
            self._configure_port_forwarding()

        self.vbox.modify(cfg.vm_name, "--boot1", "dvd", "--boot2", "disk", "--boot3", "none", "--boot4", "none")

        host_ip = detect_host_ip()
        self._print_kickstart_guidance(host_ip)
        if cfg.auto_start_http:
            directory = cfg.kickstart_file.parent
            log("INFO", f"Attempting to auto-start HTTP server on {host_ip}:{cfg.host_http_port} serving {directory}")
            pid = spawn_detached(directory, cfg.host_http_port, cfg.http_log)
            log("INFO", f"HTTP server started in background (PID: {pid}).")
        self._print_setup_summary(host_ip)
        return True

    def _configure_network(self) -> None:
        cfg = self.cfg
        if cfg.network_type == "bridged":
            if not cfg.bridge_adapter:
                raise ManagerError("BRIDGE_ADAPTER must be set when VM_NETWORK_TYPE=bridged")
            self.vbox.modify(cfg.vm_name, "--nic1", "bridged", "--bridgeadapter1", cfg.bridge_adapter)
        else:
            self.vbox.modify(cfg.vm_name, "--nic1", "nat")

    def _configure_storage(self) -> None:
        cfg = self.cfg
        print_header("Setting up storage")
        self.vbox.create_disk(cfg.disk_path, cfg.disk_size_mb)
        self.vbox.add_controller(cfg.vm_name, SATA_CONTROLLER, "sata", "IntelAhci")
        self.vbox.attach(cfg.vm_name, SATA_CONTROLLER, 0, 0, "hdd", cfg.disk_path)
        self.vbox.add_controller(cfg.vm_name, IDE_CONTROLLER, "ide", "PIIX4")
        self.vbox.attach(cfg.vm_name, IDE_CONTROLLER, 0, 0, "dvddrive", cfg.iso_path)

    def _configure_port_forwarding(self) -> None:
        print_header("Configuring NAT port forwarding")
        rules = self.cfg.port_forwards()
        for rule in rules:
            self.vbox.delete_nat_rule(self.cfg.vm_name, rule.name)
        for rule in rules:
            log("INFO", f"Setting up {rule.name} host:{rule.host_port} -> guest:{rule.guest_port}")
            self.vbox.add_nat_rule(self.cfg.vm_name, rule)

    def _print_kickstart_guidance(self, host_ip: str) -> None:
        cfg = self.cfg
        ks = cfg.kickstart_file
        print_header("RHEL Kickstart (Automated Install)")
        print("To automate the RHEL installation with Kickstart:")
        print(f"1) Place your Kickstart file at: {ks}")
        print(f"   Reference: {KICKSTART_DOCS_URL}")
        print("2) Serve it over HTTP (from its directory):")
        print(f'   cd "{ks.parent}" && python3 -m http.server {cfg.host_http_port}')
        print("3) At the installer boot menu, press 'e' (or Tab) to edit kernel params and append:")
        print(f"   inst.ks=http://{host_ip}:{cfg.host_http_port}/{ks.name} {TEXT_MODE_ARG}")
        print(f"   Optional console for headless: {SERIAL_CONSOLE_ARG}")
        print("   (or build a patched ISO with 'kickvm build-iso' to skip this step)")
        print(f"4) Set the VM hostname during install or via Kickstart. Current setting: {cfg.hostname}")
        print(flush=True)

    def _print_setup_summary(self, host_ip: str) -> None:
        cfg = self.cfg
        print(f"VM created successfully at: {cfg.home_dir}")
        print(f"Start the VM with: kickvm start {cfg.vm_name}")
        print(f'Or directly:       VBoxManage startvm "{cfg.vm_name}" --type headless')
        if cfg.network_type == "nat":
            print(f"SSH (after install): ssh -p {cfg.host_ssh_port} {cfg.ssh_user}@{host_ip}")
            print(f"HTTP (guest:{cfg.guest_http_port}): http://{host_ip}:{cfg.host_http_port}/")
        print(flush=True)

    # ------------------------------------------------------------------ start

    def _reconcile_state(self, assume_yes: bool) -> bool:
        """Bring the VM into a bootable state. Returns True when it is still running."""
        name = self.cfg.vm_name
        state = self.vbox.state(name)
        if state == "running":
            log("INFO", f"VM '{name}' is already running")
            if not confirm("Stop and restart the VM", assume_yes=assume_yes):
                log("INFO", "Connecting to existing VM session...")
                return True
            log("INFO", "Stopping VM...")
        elif state in STARTABLE_STATES:
            return False
        else:
            log("INFO", f"VM is in state: {state}. Forcing poweroff...")
        self.vbox.control(name, "poweroff")
        time.sleep(POWEROFF_SETTLE_SECONDS)
        return False

    def start(self, assume_yes: bool = False, follow: bool = True) -> None:
        cfg = self.cfg
        self._require_vbox()
        self._require_vm()
        already_running = self._reconcile_state(assume_yes)

        if not cfg.kickstart_file.is_file():
            raise MissingInput(f"Kickstart file not found: {cfg.kickstart_file}")

        free_port(cfg.host_http_port)
        with HttpServer(cfg.kickstart_file.parent, cfg.host_http_port, cfg.http_log) as server:
            server.wait_ready(f"http://127.0.0.1:{cfg.host_http_port}/{cfg.kickstart_file.name}")

            if not already_running:
                remove_file(cfg.serial_log)
                log("INFO", f"Starting VM '{cfg.vm_name}' ({cfg.start_type})...")
                self.vbox.start(cfg.vm_name, cfg.start_type)

            log("INFO", "Waiting for serial console log...")
            if wait_for_path(cfg.serial_log, timeout=SERIAL_LOG_WAIT, interval=1.0):
                log("INFO", "Serial log ready")
            else:
                log("WARN", f"Serial log {cfg.serial_log} did not appear within {int(SERIAL_LOG_WAIT)}s")

            self.print_start_banner()
            if follow:
                self.follow_logs()

    def print_start_banner(self) -> None:
        cfg = self.cfg
        lines = [
            "VM STARTED - Automated Installation",
            f"VM Name: {cfg.vm_name}",
            f"Kickstart HTTP URL: {cfg.kickstart_url}",
            f"Serial log file: {cfg.serial_log}",
            f"HTTP server log: {cfg.http_log}",
            f"Remote Console (VRDE): {VRDE_ADDRESS}",
            f"SSH (after install): ssh -p {cfg.host_ssh_port} {cfg.ssh_user}@localhost",
        ]
        border = "=" * (max(len(line) for line in lines) + 2)
        log("INFO", border)
        for line in lines:
            log("INFO", f" {line}")
        log("INFO", border)
        log(
            "INFO",
            "If the ISO was not built with 'kickvm build-iso', press 'e' at the GRUB menu and append: "
            f"inst.ks=http://{NAT_HOST_ADDRESS}:{cfg.host_http_port}/{cfg.kickstart_file.name} "
            f"{TEXT_MODE_ARG} {SERIAL_CONSOLE_ARG}",
        )

    def follow_logs(self, state_interval: float = 5.0) -> None:
        """Stream serial and HTTP logs until the VM stops or the user interrupts."""
        cfg = self.cfg
        follower = LogFollower({SERIAL: cfg.serial_log, HTTP: cfg.http_log})
        last_check = 0.0
        running = True

        def keep_going() -> bool:
            nonlocal last_check, running
            now = time.time()
            if now - last_check >= state_interval:
                last_check = now
                running = self.vbox.state(cfg.vm_name) == "running"
                if not running:
                    log("INFO", f"VM '{cfg.vm_name}' is no longer running")
            return running

        log("INFO", "Following serial console and HTTP access logs (Ctrl+C to detach)")
        try:
            for label, line in follower.follow(keep_going):
                print(f"[{label}] {line}", flush=True)
                notice = classify(label, line, cfg.kickstart_file.name)
                if notice:
                    print(f"*** {notice} ***", flush=True)
        except KeyboardInterrupt:
            log("INFO", "Detached from logs; the VM keeps running. Use 'kickvm stop' to stop it.")

    # ------------------------------------------------------------------- stop

    def stop(self) -> None:
        cfg = self.cfg
        log("INFO", f"Stopping VM '{cfg.vm_name}'...")
        if not self.vbox.control(cfg.vm_name, "acpipowerbutton"):
            if not self.vbox.control(cfg.vm_name, "poweroff"):
                log("DEBUG", f"VM '{cfg.vm_name}' did not accept poweroff (not running?)")
        time.sleep(STOP_SETTLE_SECONDS)

        log("INFO", "Cleaning up...")
        remove_file(cfg.serial_log)
        remove_file(cfg.http_log)
        if free_port(cfg.host_http_port):
            log("INFO", "Stopped HTTP server")
        log("SUCCESS", "VM stopped and cleaned up")
        log("INFO", f"To restart: kickvm start {cfg.vm_name}")

    def status(self) -> str:
        self._require_vbox()
        self._require_vm()
        state = self.vbox.state(self.cfg.vm_name) or "unknown"
        log("INFO", f"VM '{self.cfg.vm_name}' state: {state}")
        for line in self.vbox.info(self.cfg.vm_name).splitlines():
            # attached media lines look like "SATA Controller (0, 0): /path/disk.vdi (UUID: ...)"
            if "(UUID:" in line and "Controller" in line:
                log("INFO", f"  {line.strip()}")
        return state
