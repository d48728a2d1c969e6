"""
vfio-preflight Exception Hierarchy

Provides clear, actionable error messages with structured information
for logging, operator feedback, and programmatic error handling.
"""

from typing import Optional, Dict, Any


class PreflightError(Exception):
    """
    Base exception for all vfio-preflight errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context as key-value pairs
        cause: Original exception that caused this error
        recoverable: Whether the run can continue after this error
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable

    def __str__(self):
        s = f"[{self.code}] {self.message}"
        if self.details:
            s += f" (details: {self.details})"
        if self.cause:
            s += f" caused by: {self.cause}"
        return s

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# Host environment errors
# =============================================================================

class CollectionError(PreflightError):
    """A required pseudo-file is missing, unreadable or unparsable."""
    def __init__(self, path: str, reason: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Cannot collect host facts from {path}: {reason}",
            code="COLLECTION_FAILED",
            details={"path": str(path), "reason": reason},
            cause=cause,
            recoverable=False,
        )


class EnvironmentFatal(PreflightError):
    """Host precondition that cannot be fixed without operator action."""
    def __init__(self, message: str, remediation: Optional[str] = None):
        super().__init__(
            message,
            code="ENVIRONMENT_FATAL",
            details={"remediation": remediation} if remediation else None,
            recoverable=False,
        )
        self.remediation = remediation


class EnvironmentWarning(PreflightError):
    """Advisory host condition; further checks still run."""
    def __init__(self, message: str):
        super().__init__(message, code="ENVIRONMENT_WARNING")


class UnsupportedPath(PreflightError):
    """A recognized diagnosis branch that cannot be diagnosed yet."""
    def __init__(self, branch: str, reason: str = "not yet diagnosable"):
        super().__init__(
            f"{branch}: {reason}",
            code="UNSUPPORTED_PATH",
            details={"branch": branch},
        )
        self.branch = branch


# =============================================================================
# Hypervisor errors
# =============================================================================

class HypervisorError(PreflightError):
    """Base for libvirt-related errors."""
    pass


class LibvirtConnectionError(HypervisorError):
    """Failed to connect to libvirt."""
    def __init__(self, uri: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Cannot connect to libvirt at {uri}",
            code="LIBVIRT_CONNECTION_FAILED",
            details={"uri": uri},
            cause=cause,
        )


class DomainNotFoundError(HypervisorError):
    """Domain does not exist."""
    def __init__(self, domain_name: str):
        super().__init__(
            f"Domain '{domain_name}' not found",
            code="DOMAIN_NOT_FOUND",
            details={"domain_name": domain_name},
            recoverable=False,
        )
