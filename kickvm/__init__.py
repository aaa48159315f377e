"""kickvm package."""

__all__ = [
    "bootcfg",
    "cli",
    "config",
    "constants",
    "exceptions",
    "hypervisor",
    "iso",
    "models",
    "network",
    "services",
    "status",
    "tools",
    "utils",
    "vm",
]
