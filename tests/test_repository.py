"""Tests for the signature repository."""

from __future__ import annotations

from pathlib import Path

import pytest

from buildattest.errors import ConfigurationError, RepositoryError, SigningError
from buildattest.manifest import HashManifest, ManifestEntry
from buildattest.repository import (
    SIGNATURE_FILENAME,
    LocalSignatureRepository,
    MemorySignatureRepository,
)
from buildattest.units import SignerIdentity


@pytest.fixture
def manifest() -> HashManifest:
    return HashManifest(fresh=[ManifestEntry("ab" * 32, "bitcoin.tar.gz")])


class TestRecordPath:
    """Test the repository path convention."""

    def test_version_unit_signer_layout(self, sigs_root: Path, signer: SignerIdentity):
        repo = LocalSignatureRepository(sigs_root)
        assert repo.record_path("25.0", "x86_64-linux-gnu", signer) == (
            sigs_root / "25.0" / "x86_64-linux-gnu" / "alice"
        )

    def test_pure_function(self, sigs_root: Path, signer: SignerIdentity):
        """Resolution depends only on its inputs."""
        a = LocalSignatureRepository(sigs_root).record_path("25.0", "u", signer)
        b = LocalSignatureRepository(sigs_root).record_path("25.0", "u", signer)
        assert a == b

    @pytest.mark.parametrize("version", ["", "..", "25.0/../../etc"])
    def test_invalid_components(self, sigs_root: Path, signer: SignerIdentity, version: str):
        with pytest.raises(ConfigurationError):
            LocalSignatureRepository(sigs_root).record_path(version, "u", signer)


class TestLocalSignatureRepository:
    """Test the filesystem repository."""

    def test_check_ready_missing_root(self, tmp_path: Path):
        with pytest.raises(ConfigurationError):
            LocalSignatureRepository(tmp_path / "missing").check_ready()

    def test_write_creates_manifest(self, sigs_root: Path, signer: SignerIdentity, manifest: HashManifest):
        repo = LocalSignatureRepository(sigs_root)
        assert repo.exists("25.0", "unit", signer) is False

        record = repo.write("25.0", "unit", signer, manifest)

        assert repo.exists("25.0", "unit", signer) is True
        assert (record / "SHA256SUMS").read_bytes() == manifest.to_bytes()
        assert not (record / SIGNATURE_FILENAME).exists()

    def test_write_fails_without_root(self, tmp_path: Path, signer: SignerIdentity, manifest: HashManifest):
        """The repository root is never created implicitly."""
        repo = LocalSignatureRepository(tmp_path / "missing")

        with pytest.raises(RepositoryError):
            repo.write("25.0", "unit", signer, manifest)
        assert not (tmp_path / "missing").exists()

    def test_write_refuses_existing_record(self, sigs_root: Path, signer: SignerIdentity, manifest: HashManifest):
        """A record created concurrently is neither overwritten nor removed."""
        repo = LocalSignatureRepository(sigs_root)
        record = repo.write("25.0", "unit", signer, manifest)
        (record / SIGNATURE_FILENAME).write_text("winner")

        with pytest.raises(RepositoryError, match="concurrently"):
            repo.write("25.0", "unit", signer, HashManifest(fresh=[ManifestEntry("cd" * 32, "other")]))

        assert (record / "SHA256SUMS").read_bytes() == manifest.to_bytes()
        assert (record / SIGNATURE_FILENAME).read_text() == "winner"

    def test_write_signature(self, sigs_root: Path, signer: SignerIdentity, manifest: HashManifest):
        repo = LocalSignatureRepository(sigs_root)
        record = repo.write("25.0", "unit", signer, manifest)

        path = repo.write_signature(record, b"-----BEGIN-----\n")

        assert path == record / "SHA256SUMS.asc"
        assert path.read_bytes() == b"-----BEGIN-----\n"

    def test_rollback_removes_record(self, sigs_root: Path, signer: SignerIdentity, manifest: HashManifest):
        repo = LocalSignatureRepository(sigs_root)
        record = repo.write("25.0", "unit", signer, manifest)
        repo.write_signature(record, b"sig")

        repo.rollback(record)

        assert not record.exists()
        assert repo.exists("25.0", "unit", signer) is False

    def test_rollback_absent_is_noop(self, sigs_root: Path):
        LocalSignatureRepository(sigs_root).rollback(sigs_root / "25.0" / "u" / "nobody")

    def test_staged_record_kept_on_success(self, sigs_root: Path, signer: SignerIdentity, manifest: HashManifest):
        repo = LocalSignatureRepository(sigs_root)

        with repo.staged_record("25.0", "unit", signer, manifest) as record:
            repo.write_signature(record, b"sig")

        assert (record / "SHA256SUMS").exists()
        assert (record / SIGNATURE_FILENAME).exists()

    def test_staged_record_rolled_back_on_failure(self, sigs_root: Path, signer: SignerIdentity, manifest: HashManifest):
        """Any failure inside the block leaves no trace of the record."""
        repo = LocalSignatureRepository(sigs_root)

        with pytest.raises(SigningError):
            with repo.staged_record("25.0", "unit", signer, manifest) as record:
                raise SigningError("key revoked")

        assert not record.exists()

    def test_staged_record_rolled_back_on_interrupt(self, sigs_root: Path, signer: SignerIdentity, manifest: HashManifest):
        repo = LocalSignatureRepository(sigs_root)

        with pytest.raises(KeyboardInterrupt):
            with repo.staged_record("25.0", "unit", signer, manifest) as record:
                raise KeyboardInterrupt

        assert not record.exists()

    def test_siblings_untouched_by_rollback(self, sigs_root: Path, manifest: HashManifest):
        """Rolling back one signer's record keeps other signers' records."""
        repo = LocalSignatureRepository(sigs_root)
        bob = SignerIdentity(key_id="bob")
        carol = SignerIdentity(key_id="carol")
        kept = repo.write("25.0", "unit", bob, manifest)

        repo.rollback(repo.write("25.0", "unit", carol, manifest))

        assert (kept / "SHA256SUMS").exists()


class TestMemorySignatureRepository:
    """Test the in-memory repository."""

    def test_write_and_rollback(self, signer: SignerIdentity, manifest: HashManifest):
        repo = MemorySignatureRepository()

        record = repo.write("25.0", "unit", signer, manifest)
        repo.write_signature(record, b"sig")

        assert repo.exists("25.0", "unit", signer)
        assert repo.records[record] == {"SHA256SUMS": manifest.to_bytes(), "SHA256SUMS.asc": b"sig"}

        repo.rollback(record)
        assert not repo.exists("25.0", "unit", signer)

    def test_write_existing_fails(self, signer: SignerIdentity, manifest: HashManifest):
        repo = MemorySignatureRepository()
        repo.write("25.0", "unit", signer, manifest)

        with pytest.raises(RepositoryError):
            repo.write("25.0", "unit", signer, manifest)

    def test_signature_without_record(self, signer: SignerIdentity):
        repo = MemorySignatureRepository()
        with pytest.raises(RepositoryError):
            repo.write_signature(Path("/memory/25.0/unit/alice"), b"sig")
