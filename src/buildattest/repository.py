"""Signature repository: where attestation records are published.

Records live at ``<root>/<version>/<unit>/<signer>/`` and hold SHA256SUMS
plus an optional SHA256SUMS.asc. A record is immutable once written; the
pipeline treats an existing record as already attested.

Concurrency: exists() followed by write() is a check-then-create sequence
and is not atomic across processes. Two runs for the same signer, version
and unit can both see "missing". The filesystem implementation creates the
leaf directory exclusively, so the slower run fails with RepositoryError
and leaves the faster run's record untouched. No locking is attempted.
"""

from __future__ import annotations

import logging
import shutil
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from buildattest.errors import ConfigurationError, RepositoryError
from buildattest.manifest import MANIFEST_FILENAME, HashManifest
from buildattest.units import SignerIdentity

logger = logging.getLogger(__name__)

SIGNATURE_FILENAME = f"{MANIFEST_FILENAME}.asc"


def _check_component(kind: str, value: str) -> str:
    if not value or "/" in value or "\\" in value or value in (".", ".."):
        raise ConfigurationError(f"Invalid {kind} for repository path: {value!r}")
    return value


class SignatureRepository(ABC):
    """Key-value view of the repository keyed by (version, unit, signer)."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def record_path(self, version: str, unit_name: str, signer: SignerIdentity) -> Path:
        """Resolve the record directory. Pure function of its inputs."""
        return (
            self.root
            / _check_component("version", version)
            / _check_component("unit name", unit_name)
            / _check_component("signer name", signer.display_name)
        )

    @abstractmethod
    def check_ready(self) -> None:
        """Raise ConfigurationError if records cannot be written at all."""
        pass

    @abstractmethod
    def exists(self, version: str, unit_name: str, signer: SignerIdentity) -> bool:
        """Return whether a record already exists."""
        pass

    @abstractmethod
    def write(
        self,
        version: str,
        unit_name: str,
        signer: SignerIdentity,
        manifest: HashManifest,
    ) -> Path:
        """Create the record directory and write the manifest into it.

        Returns:
            The record path

        Raises:
            RepositoryError: If the directory cannot be created or written
        """
        pass

    @abstractmethod
    def write_signature(self, record: Path, signature: bytes) -> Path:
        """Write the detached signature into an existing record."""
        pass

    @abstractmethod
    def rollback(self, record: Path) -> None:
        """Remove a record and everything under it. No-op if absent."""
        pass

    @contextmanager
    def staged_record(
        self,
        version: str,
        unit_name: str,
        signer: SignerIdentity,
        manifest: HashManifest,
    ) -> Iterator[Path]:
        """Write a record that is rolled back unless the block completes.

        Interrupts are treated like failures: a record is never left behind
        half-populated.
        """
        record = self.write(version, unit_name, signer, manifest)
        try:
            yield record
        except BaseException:
            logger.warning("Rolling back partial record %s", record)
            self.rollback(record)
            raise


class LocalSignatureRepository(SignatureRepository):
    """Repository on a local (or synced) filesystem checkout."""

    def check_ready(self) -> None:
        if not self.root.is_dir():
            raise ConfigurationError(f"Signature repository root does not exist: {self.root}")

    def exists(self, version: str, unit_name: str, signer: SignerIdentity) -> bool:
        return self.record_path(version, unit_name, signer).exists()

    def write(
        self,
        version: str,
        unit_name: str,
        signer: SignerIdentity,
        manifest: HashManifest,
    ) -> Path:
        record = self.record_path(version, unit_name, signer)
        if not self.root.is_dir():
            raise RepositoryError(f"Signature repository root does not exist: {self.root}")

        try:
            record.parent.mkdir(parents=True, exist_ok=True)
            # Exclusive create: a concurrent writer for the same key loses here.
            record.mkdir()
        except FileExistsError as e:
            raise RepositoryError(f"Record appeared concurrently: {record}") from e
        except OSError as e:
            raise RepositoryError(f"Cannot create record directory {record}: {e}") from e

        try:
            (record / MANIFEST_FILENAME).write_bytes(manifest.to_bytes())
        except OSError as e:
            self.rollback(record)
            raise RepositoryError(f"Cannot write manifest into {record}: {e}") from e

        logger.debug("Wrote %s (%d entries)", record / MANIFEST_FILENAME, len(manifest))
        return record

    def write_signature(self, record: Path, signature: bytes) -> Path:
        path = record / SIGNATURE_FILENAME
        try:
            path.write_bytes(signature)
        except OSError as e:
            raise RepositoryError(f"Cannot write signature into {record}: {e}") from e
        return path

    def rollback(self, record: Path) -> None:
        try:
            shutil.rmtree(record)
        except FileNotFoundError:
            return
        logger.info("Removed partial record %s", record)


class MemorySignatureRepository(SignatureRepository):
    """In-memory repository, for dry runs and tests."""

    def __init__(self, root: Path = Path("/memory")) -> None:
        super().__init__(root)
        self.records: dict[Path, dict[str, bytes]] = {}

    def check_ready(self) -> None:
        return None

    def exists(self, version: str, unit_name: str, signer: SignerIdentity) -> bool:
        return self.record_path(version, unit_name, signer) in self.records

    def write(
        self,
        version: str,
        unit_name: str,
        signer: SignerIdentity,
        manifest: HashManifest,
    ) -> Path:
        record = self.record_path(version, unit_name, signer)
        if record in self.records:
            raise RepositoryError(f"Record appeared concurrently: {record}")
        self.records[record] = {MANIFEST_FILENAME: manifest.to_bytes()}
        return record

    def write_signature(self, record: Path, signature: bytes) -> Path:
        if record not in self.records:
            raise RepositoryError(f"No such record: {record}")
        self.records[record][SIGNATURE_FILENAME] = signature
        return record / SIGNATURE_FILENAME

    def rollback(self, record: Path) -> None:
        self.records.pop(record, None)
