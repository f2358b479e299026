"""Output unit discovery and signer identity."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from buildattest.errors import BuildDefectError, ConfigurationError
from buildattest.manifest import ManifestEntry, parse_manifest, path_sort_key

logger = logging.getLogger(__name__)

DEFAULT_SKIP_MARKER = "SKIPATTEST.TAG"
DEFAULT_INPUT_MANIFEST = "inputs.SHA256SUMS"


@dataclass(frozen=True)
class SignerIdentity:
    """Credential plus the name records are filed under.

    Attributes:
        key_id: Identifier handed to the signing backend
        display_name: Leaf directory name in the repository (defaults to key_id)
    """

    key_id: str
    display_name: str = ""

    def __post_init__(self) -> None:
        if not self.key_id:
            raise ConfigurationError("Signer key id must not be empty")
        if not self.display_name:
            object.__setattr__(self, "display_name", self.key_id)
        if "/" in self.display_name or self.display_name in (".", ".."):
            raise ConfigurationError(f"Invalid signer name: {self.display_name!r}")


@dataclass(frozen=True)
class OutputUnit:
    """One build-output directory, probed once at discovery time."""

    name: str
    path: Path
    has_skip_marker: bool = False
    input_manifest: tuple[ManifestEntry, ...] | None = None

    @classmethod
    def from_path(
        cls,
        path: Path,
        skip_marker: str = DEFAULT_SKIP_MARKER,
        input_manifest_name: str = DEFAULT_INPUT_MANIFEST,
    ) -> OutputUnit:
        """Probe a unit directory for its sentinel files.

        A marked unit is not looked into any further; its input manifest is
        left unread.

        Raises:
            BuildDefectError: If the input manifest exists but is malformed
        """
        has_skip_marker = (path / skip_marker).exists()
        input_manifest = None
        manifest_path = path / input_manifest_name
        if not has_skip_marker and manifest_path.is_file():
            text = manifest_path.read_text(encoding="utf-8", errors="surrogateescape")
            try:
                input_manifest = tuple(parse_manifest(text))
            except BuildDefectError as e:
                raise BuildDefectError(f"Invalid {manifest_path}: {e}") from e

        return cls(
            name=path.name,
            path=path,
            has_skip_marker=has_skip_marker,
            input_manifest=input_manifest,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "path": str(self.path),
            "has_skip_marker": self.has_skip_marker,
            "input_entries": len(self.input_manifest) if self.input_manifest else 0,
        }


def discover_units(
    base_dir: Path,
    skip_marker: str = DEFAULT_SKIP_MARKER,
    input_manifest_name: str = DEFAULT_INPUT_MANIFEST,
) -> list[OutputUnit]:
    """Enumerate the immediate subdirectories of base_dir as output units.

    Units come back in byte-wise name order so every run processes them
    identically.

    Raises:
        ConfigurationError: If base_dir is not a directory or holds no units
    """
    if not base_dir.is_dir():
        raise ConfigurationError(f"Base directory does not exist: {base_dir}")

    with os.scandir(base_dir) as it:
        candidates = [Path(e.path) for e in it if e.is_dir(follow_symlinks=True)]

    if not candidates:
        raise ConfigurationError(f"No output units found under {base_dir}")

    candidates.sort(key=lambda p: path_sort_key(p.name))
    units = [OutputUnit.from_path(p, skip_marker, input_manifest_name) for p in candidates]
    logger.info("Discovered %d output unit(s) under %s", len(units), base_dir)
    return units
