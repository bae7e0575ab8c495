"""Exceptions raised by CANtastic operations."""

from typing import Dict, List, Optional, Sequence, Tuple


class CantasticError(Exception):
    """Base exception for CANtastic errors."""

    pass


class InvalidParameterError(CantasticError, ValueError):
    """Raised when a bitrate or queue length is outside the allowed choices."""

    pass


class PreconditionError(CantasticError):
    """Raised when a required tool, script or system state is missing."""

    pass


class CommandError(CantasticError):
    """Raised when an external command fails.

    Args:
        message: What the operation was trying to do.
        command: The argv that failed.
        returncode: Exit status of the command.
        stderr: Captured error output, if any.
    """

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.command = list(command) if command else []
        self.returncode = returncode
        self.stderr = stderr


class ValidationError(CantasticError):
    """Raised when the values read back from disk differ from the requested ones.

    The files are left on disk as written so they can be inspected.

    Args:
        scheme_name: Display name of the scheme that was written.
        mismatches: {field: (expected, found)} for every field that differs.
        files: Paths the operator should check.
    """

    def __init__(
        self,
        scheme_name: str,
        mismatches: Dict[str, Tuple[str, Optional[str]]],
        files: Optional[List[str]] = None,
    ):
        self.scheme_name = scheme_name
        self.mismatches = mismatches
        self.files = files or []
        details = ", ".join(
            f"{name} expected {expected} found {found if found is not None else 'nothing'}"
            for name, (expected, found) in mismatches.items()
        )
        super().__init__(f"{scheme_name} validation failed: {details}")
