"""Tests for run configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from buildattest.config import AttestConfig
from buildattest.errors import ConfigurationError


def test_defaults():
    """Defaults sign with ed25519 and use the standard reserved filenames."""
    config = AttestConfig()
    assert config.no_sign is False
    assert config.backend == "ed25519"
    assert config.effective_backend == "ed25519"
    assert config.skip_marker == "SKIPATTEST.TAG"
    assert config.input_manifest == "inputs.SHA256SUMS"


def test_no_sign_selects_noop_backend():
    config = AttestConfig(no_sign=True, backend="gpg")
    assert config.effective_backend == "none"


def test_invalid_backend():
    with pytest.raises(ConfigurationError, match="backend"):
        AttestConfig(backend="sigstore")


def test_paths_coerced():
    config = AttestConfig(base_dir="out", sigs_root="sigs")
    assert config.base_dir == Path("out")
    assert config.sigs_root == Path("sigs")


def test_validate_reports_missing_setting(tmp_path: Path):
    config = AttestConfig(base_dir=tmp_path, version="25.0", sigs_root=tmp_path)
    with pytest.raises(ConfigurationError, match="signer"):
        config.validate()


def test_validate_complete(tmp_path: Path):
    AttestConfig(base_dir=tmp_path, version="25.0", signer="k", sigs_root=tmp_path).validate()


def test_signer_identity():
    assert AttestConfig(signer="0xABCD").signer_identity().display_name == "0xABCD"
    assert AttestConfig(signer="0xABCD", signer_name="alice").signer_identity().display_name == "alice"


def test_merged_ignores_none():
    config = AttestConfig(version="25.0").merged(version=None, signer="k")
    assert config.version == "25.0"
    assert config.signer == "k"


def test_config_from_env(monkeypatch, tmp_path: Path):
    """Environment variables layer over a base configuration."""
    monkeypatch.setenv("BUILDATTEST_BASE_DIR", str(tmp_path / "out"))
    monkeypatch.setenv("BUILDATTEST_VERSION", "26.0rc1")
    monkeypatch.setenv("BUILDATTEST_SIGNER", "0xABCD")
    monkeypatch.setenv("BUILDATTEST_NO_SIGN", "yes")
    monkeypatch.delenv("BUILDATTEST_SIGNER_NAME", raising=False)

    config = AttestConfig.from_env(AttestConfig(signer_name="alice", version="25.0"))

    assert config.base_dir == tmp_path / "out"
    assert config.version == "26.0rc1"
    assert config.signer == "0xABCD"
    assert config.signer_name == "alice"
    assert config.no_sign is True


def test_config_from_yaml(tmp_path: Path):
    path = tmp_path / "attest.yaml"
    path.write_text(
        "version: '25.0'\n"
        "signer: '0xABCD'\n"
        "signer_name: alice\n"
        "sigs_root: /srv/guix.sigs\n"
        "backend: gpg\n"
        "exclude_patterns: ['*.SHA256SUMS', '*.sig']\n"
    )

    config = AttestConfig.from_yaml(path)

    assert config.version == "25.0"
    assert config.sigs_root == Path("/srv/guix.sigs")
    assert config.backend == "gpg"
    assert config.exclude_patterns == ("*.SHA256SUMS", "*.sig")


def test_yaml_unknown_key(tmp_path: Path):
    path = tmp_path / "attest.yaml"
    path.write_text("versoin: '25.0'\n")

    with pytest.raises(ConfigurationError, match="versoin"):
        AttestConfig.from_yaml(path)


@pytest.mark.parametrize("body,field", [
    ("no_sign: 'false'\n", "no_sign"),
    ("exclude_patterns: '*.sums'\n", "exclude_patterns"),
    ("exclude_patterns: [1, 2]\n", "exclude_patterns"),
    ("version: 25.0\n", "version"),
])
def test_yaml_wrong_value_types(tmp_path: Path, body: str, field: str):
    """Values of the wrong type are rejected instead of being coerced."""
    path = tmp_path / "attest.yaml"
    path.write_text(body)

    with pytest.raises(ConfigurationError, match=field):
        AttestConfig.from_yaml(path)


def test_yaml_boolean_no_sign(tmp_path: Path):
    path = tmp_path / "attest.yaml"
    path.write_text("no_sign: false\n")
    assert AttestConfig.from_yaml(path).no_sign is False


def test_yaml_not_a_mapping(tmp_path: Path):
    path = tmp_path / "attest.yaml"
    path.write_text("- a\n- b\n")

    with pytest.raises(ConfigurationError, match="mapping"):
        AttestConfig.from_yaml(path)


def test_yaml_invalid(tmp_path: Path):
    path = tmp_path / "attest.yaml"
    path.write_text("version: [unclosed\n")

    with pytest.raises(ConfigurationError, match="Invalid YAML"):
        AttestConfig.from_yaml(path)


def test_to_dict():
    data = AttestConfig(version="25.0", signer="k", no_sign=True).to_dict()
    assert data["backend"] == "none"
    assert data["signer_name"] == "k"
    assert data["exclude_patterns"] == ["*.SHA256SUMS", "SHA256SUMS"]
