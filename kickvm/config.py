"""Configuration loading and environment variable parsing for kickvm."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from kickvm.constants import (
    CONFIG_ENV,
    DEFAULT_BASE_PATH,
    DEFAULT_ISO_PATH,
    DEFAULT_KS_FILE,
    DEFAULT_OS_TYPE,
    DEFAULT_START_TYPE,
    DEFAULT_VM_NAME,
    HTTP_LOG_PATH,
    SERIAL_LOG_TEMPLATE,
    SUPPORTED_NETWORK_TYPES,
    SUPPORTED_START_TYPES,
    TRUTHY,
)
from kickvm.exceptions import ManagerError
from kickvm.models import BuildConfig, VMConfig
from kickvm.utils import get_env, parse_int

# Environment variable -> VMConfig field (also the key accepted under "vm:" in the YAML file)
ENV_FIELDS = {
    "VM_NAME": "vm_name",
    "VM_OS_TYPE": "os_type",
    "VM_CPUS": "cpus",
    "VM_MEMORY": "memory_mb",
    "VM_DISK_SIZE": "disk_size_mb",
    "VM_NETWORK_TYPE": "network_type",
    "VM_BASE_PATH": "base_path",
    "VM_DISK_PATH": "disk_path",
    "ISO_PATH": "iso_path",
    "HOST_SSH_PORT": "host_ssh_port",
    "GUEST_SSH_PORT": "guest_ssh_port",
    "HOST_HTTP_PORT": "host_http_port",
    "GUEST_HTTP_PORT": "guest_http_port",
    "VM_HOSTNAME": "hostname",
    "KS_FILE_PATH": "kickstart_file",
    "AUTO_START_HTTP": "auto_start_http",
    "BRIDGE_ADAPTER": "bridge_adapter",
    "VM_START_TYPE": "start_type",
    "SSH_USER": "ssh_user",
}

DEFAULTS: Dict[str, Any] = {
    "vm_name": DEFAULT_VM_NAME,
    "os_type": DEFAULT_OS_TYPE,
    "cpus": "2",
    "memory_mb": "4096",
    "disk_size_mb": "32768",
    "network_type": "nat",
    "base_path": str(DEFAULT_BASE_PATH),
    "disk_path": None,
    "iso_path": str(DEFAULT_ISO_PATH),
    "host_ssh_port": "4242",
    "guest_ssh_port": "22",
    "host_http_port": "8080",
    "guest_http_port": "80",
    "hostname": "localhost",
    "kickstart_file": None,
    "auto_start_http": "false",
    "bridge_adapter": None,
    "start_type": DEFAULT_START_TYPE,
    "ssh_user": "root",
}

_INT_BOUNDS = {
    "cpus": (1, 64),
    "memory_mb": (256, None),
    "disk_size_mb": (1024, None),
    "host_ssh_port": (1, 65535),
    "guest_ssh_port": (1, 65535),
    "host_http_port": (1, 65535),
    "guest_http_port": (1, 65535),
}


def load_config_file(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Return the ``vm:`` mapping from a YAML config file (empty when none is configured)."""
    explicit = config_path is not None
    if config_path is None:
        env_path = get_env(CONFIG_ENV)
        if not env_path:
            return {}
        config_path = Path(env_path)
        explicit = True
    if not config_path.exists():
        if explicit:
            raise ManagerError(f"Config file missing: {config_path}")
        return {}
    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ManagerError(f"Config file {config_path} contains invalid YAML: {exc}")
    if not isinstance(data, dict):
        raise ManagerError(f"Config file {config_path} must contain a YAML mapping")
    section = data.get("vm", {}) or {}
    if not isinstance(section, dict):
        raise ManagerError(f"'vm' in {config_path} must be a mapping")
    unknown = sorted(set(section) - set(DEFAULTS))
    if unknown:
        raise ManagerError(f"Unknown keys in {config_path}: {', '.join(unknown)}")
    return section


def _resolve(field: str, env_name: str, file_values: Dict[str, Any], overrides: Dict[str, Any]) -> Any:
    if overrides.get(field) is not None:
        return overrides[field]
    env_value = get_env(env_name)
    if env_value is not None:
        return env_value
    if file_values.get(field) is not None:
        return file_values[field]
    return DEFAULTS[field]


def parse_env(config_path: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None) -> VMConfig:
    """Build the VM configuration: defaults < config file < environment < CLI overrides."""
    file_values = load_config_file(config_path)
    overrides = overrides or {}
    raw = {field: _resolve(field, env_name, file_values, overrides) for env_name, field in ENV_FIELDS.items()}

    values: Dict[str, Any] = {}
    for field, (min_val, max_val) in _INT_BOUNDS.items():
        env_name = next(name for name, target in ENV_FIELDS.items() if target == field)
        values[field] = parse_int(env_name, str(raw[field]), min_val=min_val, max_val=max_val)

    network_type = str(raw["network_type"]).strip().lower()
    if network_type not in SUPPORTED_NETWORK_TYPES:
        supported = ", ".join(sorted(SUPPORTED_NETWORK_TYPES))
        raise ManagerError(f"Unsupported VM_NETWORK_TYPE '{raw['network_type']}'. Supported: {supported}")
    bridge_adapter = (str(raw["bridge_adapter"]).strip() if raw["bridge_adapter"] else "") or None
    if network_type == "bridged" and not bridge_adapter:
        raise ManagerError("BRIDGE_ADAPTER must be set when VM_NETWORK_TYPE=bridged")

    start_type = str(raw["start_type"]).strip().lower()
    if start_type not in SUPPORTED_START_TYPES:
        supported = ", ".join(sorted(SUPPORTED_START_TYPES))
        raise ManagerError(f"Unsupported VM_START_TYPE '{raw['start_type']}'. Supported: {supported}")

    if values["host_ssh_port"] == values["host_http_port"]:
        raise ManagerError(
            f"Port conflict: HOST_SSH_PORT={values['host_ssh_port']} collides with HOST_HTTP_PORT. "
            "Each forwarded service needs a unique host port."
        )

    vm_name = str(raw["vm_name"]).strip()
    if not vm_name:
        raise ManagerError("VM_NAME must not be empty")

    auto_start = raw["auto_start_http"]
    if not isinstance(auto_start, bool):
        auto_start = str(auto_start).strip().lower() in TRUTHY

    kickstart_raw = raw["kickstart_file"]
    kickstart_file = Path(kickstart_raw).expanduser() if kickstart_raw else Path.cwd() / DEFAULT_KS_FILE
    disk_path = Path(raw["disk_path"]).expanduser() if raw["disk_path"] else None

    return VMConfig(
        vm_name=vm_name,
        os_type=str(raw["os_type"]),
        cpus=values["cpus"],
        memory_mb=values["memory_mb"],
        disk_size_mb=values["disk_size_mb"],
        network_type=network_type,
        base_path=Path(raw["base_path"]).expanduser(),
        iso_path=Path(raw["iso_path"]).expanduser(),
        host_ssh_port=values["host_ssh_port"],
        guest_ssh_port=values["guest_ssh_port"],
        host_http_port=values["host_http_port"],
        guest_http_port=values["guest_http_port"],
        hostname=str(raw["hostname"]),
        kickstart_file=kickstart_file,
        auto_start_http=auto_start,
        serial_log=Path(SERIAL_LOG_TEMPLATE.format(name=vm_name)),
        http_log=HTTP_LOG_PATH,
        bridge_adapter=bridge_adapter,
        disk_path=disk_path,
        start_type=start_type,
        ssh_user=str(raw["ssh_user"]),
    )


def build_config_from_args(
    source_iso: str,
    kickstart_name: str,
    output_iso: str,
    kickstart_url: str,
    kickstart_dir: Optional[str] = None,
    work_dir: Optional[str] = None,
    mount_fallback: bool = False,
) -> BuildConfig:
    """Resolve build-iso arguments; the kickstart name is relative to ``kickstart_dir``."""
    if not source_iso:
        raise ManagerError("Usage: kickvm build-iso <rhel.iso> [ks.cfg] [output.iso] [ks_url]")
    base_dir = Path(kickstart_dir).expanduser() if kickstart_dir else Path.cwd()
    return BuildConfig(
        source_iso=Path(source_iso).expanduser(),
        kickstart_file=base_dir / kickstart_name,
        output_iso=Path(output_iso).expanduser(),
        kickstart_url=kickstart_url,
        work_parent=Path(work_dir).expanduser() if work_dir else None,
        mount_fallback=mount_fallback,
    )
