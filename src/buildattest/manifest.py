"""Content-hash manifests for output units.

A manifest is the `sha256sum`-style listing published as SHA256SUMS:

    <hexHash>  <relativePath>

Design decisions:
- Fresh entries are sorted by the encoded bytes of their path, so ordering
  never depends on the locale of the machine producing it
- Entries inherited from a unit's inputs.SHA256SUMS come first, verbatim,
  and are never re-sorted against the fresh section
- Files named like a manifest are excluded so a manifest never hashes itself
"""

from __future__ import annotations

import fnmatch
import logging
import os
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from buildattest.errors import BuildDefectError
from buildattest.hashing import hash_content, hash_file

if TYPE_CHECKING:
    from buildattest.units import OutputUnit

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "SHA256SUMS"
DEFAULT_EXCLUDE_PATTERNS: tuple[str, ...] = ("*.SHA256SUMS", "SHA256SUMS")

_LINE_RE = re.compile(r"^(?P<hash>[0-9a-fA-F]{32,128}) (?P<mode>[ *])(?P<path>.+)$")


def path_sort_key(path: str) -> bytes:
    """Byte-wise sort key for a manifest path."""
    return path.encode("utf-8", "surrogateescape")


@dataclass(frozen=True)
class ManifestEntry:
    """One (hash, path) line of a manifest."""

    hex_hash: str
    path: str
    binary: bool = False

    def to_line(self) -> str:
        """Render in sha256sum format (without trailing newline)."""
        mode = "*" if self.binary else " "
        return f"{self.hex_hash} {mode}{self.path}"

    @classmethod
    def from_line(cls, line: str) -> ManifestEntry:
        """Parse a single sha256sum-format line.

        Raises:
            BuildDefectError: If the line is not a valid manifest line
        """
        match = _LINE_RE.match(line)
        if match is None:
            raise BuildDefectError(f"Malformed manifest line: {line!r}")
        return cls(
            hex_hash=match.group("hash"),
            path=match.group("path"),
            binary=match.group("mode") == "*",
        )


def parse_manifest(text: str) -> list[ManifestEntry]:
    """Parse manifest text into entries, preserving order. Blank lines are ignored."""
    entries: list[ManifestEntry] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        entries.append(ManifestEntry.from_line(line))
    return entries


@dataclass
class HashManifest:
    """Ordered manifest: inherited input entries followed by fresh entries."""

    inherited: list[ManifestEntry] = field(default_factory=list)
    fresh: list[ManifestEntry] = field(default_factory=list)

    @property
    def entries(self) -> list[ManifestEntry]:
        """All entries in serialization order."""
        return [*self.inherited, *self.fresh]

    def __len__(self) -> int:
        return len(self.inherited) + len(self.fresh)

    def to_text(self) -> str:
        """Serialize to newline-terminated SHA256SUMS text."""
        return "".join(f"{entry.to_line()}\n" for entry in self.entries)

    def to_bytes(self) -> bytes:
        """Serialize to the exact bytes that get published and signed."""
        return self.to_text().encode("utf-8", "surrogateescape")

    def digest(self) -> str:
        """SHA-256 of the serialized manifest."""
        return hash_content(self.to_bytes())

    @classmethod
    def from_text(cls, text: str) -> HashManifest:
        """Load a published manifest. All entries land in the fresh section."""
        return cls(fresh=parse_manifest(text))


class HashManifestBuilder:
    """Builds the HashManifest of an output unit.

    Args:
        exclude_patterns: Filename globs (matched case-insensitively) that are
            never hashed
    """

    def __init__(self, exclude_patterns: Iterable[str] = DEFAULT_EXCLUDE_PATTERNS) -> None:
        self.exclude_patterns = tuple(p.lower() for p in exclude_patterns)

    def is_excluded(self, name: str) -> bool:
        """Check whether a filename matches a manifest pattern."""
        lowered = name.lower()
        return any(fnmatch.fnmatchcase(lowered, pattern) for pattern in self.exclude_patterns)

    def iter_files(self, root: Path) -> Iterator[tuple[Path, str]]:
        """Yield (absolute path, relative path) for every hashable file under root.

        Symbolic links are followed. A directory link pointing back at one of
        its own ancestors is skipped.
        """
        yield from self._walk(root, "", frozenset({os.path.realpath(root)}))

    def _walk(
        self,
        directory: Path,
        prefix: str,
        ancestors: frozenset[str],
    ) -> Iterator[tuple[Path, str]]:
        with os.scandir(directory) as it:
            dir_entries = list(it)

        for entry in dir_entries:
            rel_path = f"{prefix}{entry.name}"
            if entry.is_dir(follow_symlinks=True):
                real = os.path.realpath(entry.path)
                if real in ancestors:
                    logger.warning("Skipping symlink loop at %s", entry.path)
                    continue
                yield from self._walk(Path(entry.path), f"{rel_path}/", ancestors | {real})
            elif entry.is_file(follow_symlinks=True):
                if self.is_excluded(entry.name):
                    continue
                yield Path(entry.path), rel_path

    def hash_tree(self, root: Path) -> list[ManifestEntry]:
        """Hash every file under root, sorted byte-wise by relative path."""
        entries: list[ManifestEntry] = []
        try:
            for file_path, rel_path in self.iter_files(root):
                if "\n" in rel_path or "\r" in rel_path:
                    raise BuildDefectError(
                        f"Path cannot be represented in a manifest: {rel_path!r}"
                    )
                entries.append(ManifestEntry(hex_hash=hash_file(file_path), path=rel_path))
        except OSError as e:
            raise BuildDefectError(f"Cannot read output tree {root}: {e}") from e

        entries.sort(key=lambda e: path_sort_key(e.path))
        return entries

    def build(self, unit: OutputUnit) -> HashManifest:
        """Build the manifest for an output unit.

        Raises:
            BuildDefectError: If the unit contains no hashable files
        """
        fresh = self.hash_tree(unit.path)
        if not fresh:
            raise BuildDefectError(f"No files to hash in output unit {unit.name} ({unit.path})")

        inherited = list(unit.input_manifest or [])
        logger.debug(
            "Built manifest for %s: %d inherited, %d fresh entries",
            unit.name,
            len(inherited),
            len(fresh),
        )
        return HashManifest(inherited=inherited, fresh=fresh)
