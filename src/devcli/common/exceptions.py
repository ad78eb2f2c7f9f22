"""Custom exceptions for devcli."""


class DevCLIError(Exception):
    """Base exception for all devcli errors."""
    pass


class ConfigError(DevCLIError):
    """Raised when the configuration file is missing or malformed."""
    pass


class PortValidationError(DevCLIError):
    """Raised when the local ports of a rule set cannot be used."""

    def __init__(self, message: str, port: int):
        super().__init__(message)
        self.port = port


class DuplicatePortError(PortValidationError):
    """Raised when the same local port is claimed twice."""

    def __init__(self, port: int):
        super().__init__(f"Local port {port} is used more than once", port)


class PortUnavailableError(PortValidationError):
    """Raised when something already listens on a rule's local port."""

    def __init__(self, port: int, rule: object):
        super().__init__(f"Local port {port} is not available for {rule}", port)
        self.rule = rule


class ToolError(DevCLIError):
    """Raised when an external tool invocation fails."""

    def __init__(self, message: str, tool: str):
        super().__init__(message)
        self.tool = tool


class ToolMissingError(ToolError):
    """Raised when an external tool is not installed or not executable."""
    pass


class ToolCancelledError(ToolError):
    """Raised when a tool invocation is interrupted by session cancellation."""
    pass


class ResolutionError(DevCLIError):
    """Raised when a forward rule cannot be mapped to a pod."""
    pass


class PodNotFoundError(ResolutionError):
    """Raised when no running pod matches a rule's selector."""

    def __init__(self, namespace: str, app_label: str):
        super().__init__(
            f"No running pod found in namespace {namespace} with label app={app_label}"
        )
        self.namespace = namespace
        self.app_label = app_label


class ProcessError(DevCLIError):
    """Raised when a forwarding process fails to start or exits with an error."""
    pass
