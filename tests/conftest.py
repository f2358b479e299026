"""Shared fixtures for the attestation tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from buildattest.signing import Ed25519Backend
from buildattest.units import SignerIdentity

KEY_ID = "builder-key"


def write_tree(root: Path, files: dict[str, str | bytes]) -> Path:
    """Create files (relative path -> content) under root."""
    root.mkdir(parents=True, exist_ok=True)
    for rel_path, content in files.items():
        target = root / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            target.write_bytes(content)
        else:
            target.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def base_dir(tmp_path: Path) -> Path:
    """Build output directory with two attestable units."""
    base = tmp_path / "output"
    write_tree(base / "x86_64-linux-gnu", {
        "bitcoin-25.0-x86_64-linux-gnu.tar.gz": b"linux tarball",
        "bitcoin-25.0-x86_64-linux-gnu-debug.tar.gz": b"linux debug",
    })
    write_tree(base / "arm64-apple-darwin", {
        "bitcoin-25.0-arm64-apple-darwin.zip": b"darwin zip",
    })
    return base


@pytest.fixture
def sigs_root(tmp_path: Path) -> Path:
    """Empty signature repository checkout."""
    root = tmp_path / "sigs"
    root.mkdir()
    return root


@pytest.fixture
def signer() -> SignerIdentity:
    return SignerIdentity(key_id=KEY_ID, display_name="alice")


@pytest.fixture
def private_key() -> Ed25519PrivateKey:
    return Ed25519PrivateKey.generate()


@pytest.fixture
def backend(private_key: Ed25519PrivateKey) -> Ed25519Backend:
    return Ed25519Backend(keys={KEY_ID: private_key})
