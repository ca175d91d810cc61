"""Fatal errors that abort an analysis run."""


class InspectorError(RuntimeError):
    """Base class for errors that stop the run with a non-zero exit status."""


class ConfigError(InspectorError):
    pass


class CaptureError(InspectorError):
    """The capture is missing, cannot be unpacked, or cannot be read."""


class ProcessSelectionError(InspectorError):
    """The capture does not hold exactly one instance of the target process."""


class TargetThreadError(InspectorError):
    """No sample stack contains the configured entry signature."""
