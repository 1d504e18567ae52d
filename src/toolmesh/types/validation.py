"""Shared validation types for toolmesh."""

from dataclasses import dataclass, field


@dataclass
class ValidationIssue:
    """Single validation issue (error or warning).

    Used by ConfigLoader when checking a server-descriptor document.
    """

    path: str  # e.g., "servers.fs.command"
    message: str  # Human-readable description
    severity: str = "error"  # "error" | "warning"
    server_name: str | None = None  # Offending server, when the issue belongs to one


@dataclass
class ValidationResult:
    """Result of validating a server-descriptor document."""

    valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Ensure valid is False if there are errors."""
        if self.errors:
            self.valid = False
