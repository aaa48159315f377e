"""Custom exceptions for kickvm."""


class ManagerError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class ToolError(ManagerError):
    """An external tool could not be run or exited with an error."""


class HypervisorError(ManagerError):
    """A VBoxManage invocation failed."""


class BuildError(ManagerError):
    """Base class for boot image build failures."""


class MissingInput(BuildError):
    """A required input file does not exist or is not readable."""


class MissingDependency(BuildError):
    """A required external tool is not installed."""


class NoBootConfigFound(BuildError):
    """The extracted image has no bootloader configuration that can be patched."""


class ExtractionFailed(BuildError):
    """The source image could not be extracted."""


class MasteringFailed(BuildError):
    """No mastering attempt produced a usable output image."""
