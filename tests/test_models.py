"""Tests for kickvm.models module."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

from kickvm.models import BuildConfig, BuildResult, PortForward


class TestVMConfig:
    def test_disk_path_defaults_to_home_dir(self, default_vm_config):
        assert default_vm_config.home_dir == default_vm_config.base_path / "test-vm"
        assert default_vm_config.disk_path == default_vm_config.home_dir / "test-vm.vdi"

    def test_explicit_disk_path_kept(self, default_vm_config, tmp_path):
        cfg = replace(default_vm_config, disk_path=tmp_path / "fast" / "rhel.vdi")
        assert cfg.disk_path == tmp_path / "fast" / "rhel.vdi"

    def test_kickstart_url_uses_nat_host(self, default_vm_config):
        default_vm_config.host_http_port = 9000
        assert default_vm_config.kickstart_url == "http://10.0.2.2:9000/ks.cfg"

    def test_port_forwards(self, default_vm_config):
        assert default_vm_config.port_forwards() == [
            PortForward("guestssh", "tcp", 4242, 22),
            PortForward("guesthttp", "tcp", 8080, 80),
        ]


class TestBuildModels:
    def test_build_config_defaults(self):
        cfg = BuildConfig(
            source_iso=Path("rhel.iso"),
            kickstart_file=Path("ks.cfg"),
            output_iso=Path("out.iso"),
            kickstart_url="http://10.0.2.2:8080/ks.cfg",
        )
        assert cfg.default_volume_id == "RHEL-AUTO"
        assert cfg.work_parent is None
        assert cfg.mount_fallback is False

    def test_build_result_defaults(self):
        result = BuildResult(output_iso=Path("out.iso"), kickstart_url="u", volume_id="V")
        assert result.boot_configs == []
        assert result.hybrid_mbr is False
        assert result.checksum_implanted is False
