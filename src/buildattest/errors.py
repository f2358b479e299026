"""Error taxonomy for the attestation pipeline.

Every failure surfaced to callers derives from AttestationError so the CLI
can report it uniformly. None of these are retried internally.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any


class AttestationError(Exception):
    """Base class for all attestation failures."""
    pass


class ConfigurationError(AttestationError):
    """Invalid setup detected before any per-unit work begins.

    Raised for a missing repository root, an unusable signer credential,
    a base directory with no output units, or invalid config values.
    """
    pass


class BuildDefectError(AttestationError):
    """An output unit cannot be turned into a valid manifest."""
    pass


class SigningError(AttestationError):
    """The signing backend failed to produce a signature."""
    pass


class RepositoryError(AttestationError):
    """A signature record could not be created or written."""
    pass


class UnitAttestationError(AttestationError):
    """A failure while attesting one unit, after its partial record was removed.

    Attributes:
        unit_name: Name of the output unit being processed
        record_path: Resolved repository path for the unit's record
    """

    def __init__(self, unit_name: str, record_path: Path | str, message: str) -> None:
        super().__init__(f"{unit_name}: {message} (record: {record_path})")
        self.unit_name = unit_name
        self.record_path = Path(record_path)
        self.reason = message

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "unit": self.unit_name,
            "record_path": str(self.record_path),
            "reason": self.reason,
            "cause": type(self.__cause__).__name__ if self.__cause__ else None,
        }
