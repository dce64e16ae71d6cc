"""Error kinds raised by the execution engine."""

from typing import Optional


class EngineError(Exception):
    """Base class for engine errors."""
    pass


class UnsupportedLanguage(EngineError):
    """Raised when a language tag is not in the runtime registry."""

    def __init__(self, tag: Optional[str]):
        self.tag = tag
        super().__init__(f"Unsupported language: {tag!r}")


class EnvironmentCreationFailed(EngineError):
    """Raised when the isolation root for a language cannot be created."""

    def __init__(self, language: str, output: str):
        self.language = language
        self.output = output
        super().__init__(f"Failed to create {language} environment: {output.strip()}")


class DependencyInstallFailed(EngineError):
    """Raised when the install command for a package fails."""

    def __init__(self, package: str, output: str):
        self.package = package
        self.output = output
        super().__init__(f"Failed to install {package}: {output.strip()}")


class ExecutionFailed(EngineError):
    """Raised when a server process exits during its startup grace period."""

    def __init__(self, exit_code: Optional[int], output: str):
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"Process exited with status {exit_code}: {output.strip()}")


class CollaboratorUnavailable(EngineError):
    """Raised when the AI collaborator cannot produce a revised code block."""
    pass


class ProcessTerminationFailed(EngineError):
    """Raised when a tracked process cannot be stopped."""

    def __init__(self, handle: str, reason: str):
        self.handle = handle
        self.reason = reason
        super().__init__(f"Could not terminate {handle}: {reason}")
