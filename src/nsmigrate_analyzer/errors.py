from typing import Optional


class AnalyzerError(Exception):
    """Base class for every error raised by the analyzer."""


class ConfigurationError(AnalyzerError):
    pass


class MalformedArtifactError(AnalyzerError):
    """A class file or archive whose structure cannot be parsed at all.

    Callers downgrade the artifact to UNKNOWN and keep scanning the rest.
    """

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class ManifestParseError(AnalyzerError):
    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class UnresolvableDependencyError(AnalyzerError):
    """A coordinate that cannot be located in any configured repository."""

    def __init__(self, coordinate, reason: str):
        super().__init__(f"{coordinate}: {reason}")
        self.coordinate = coordinate
        self.reason = reason


class InvalidTransitionError(AnalyzerError):
    def __init__(self, subject: str, current, requested, reason: str = ""):
        cur = getattr(current, "value", current)
        req = getattr(requested, "value", requested)
        msg = f"{subject}: cannot move from {cur} to {req}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)
        self.subject = subject
        self.current = current
        self.requested = requested


class InfeasiblePlanError(AnalyzerError):
    def __init__(self, message: str, members=None):
        super().__init__(message)
        self.members = list(members or [])


class ScanCancelledError(AnalyzerError):
    pass
