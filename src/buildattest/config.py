"""
Configuration for an attestation run.

Supports:
- YAML file configuration
- Environment variable configuration
- Explicit overrides (CLI options)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from buildattest.errors import ConfigurationError
from buildattest.manifest import DEFAULT_EXCLUDE_PATTERNS
from buildattest.signing import BACKENDS
from buildattest.units import DEFAULT_INPUT_MANIFEST, DEFAULT_SKIP_MARKER, SignerIdentity

ENV_PREFIX = "BUILDATTEST_"

_PATH_FIELDS = ("base_dir", "sigs_root", "keys_dir")
_STR_FIELDS = ("version", "signer", "signer_name", "backend", "gpg", "skip_marker", "input_manifest")
_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass
class AttestConfig:
    """
    Configuration for one attestation run.

    Defaults are safe: signing is enabled with the ed25519 backend, and the
    run refuses to start until base_dir, version, signer and sigs_root are
    all set (see validate()).
    """

    base_dir: Path | None = None
    version: str = ""
    signer: str = ""
    signer_name: str = ""
    sigs_root: Path | None = None

    # Signing
    no_sign: bool = False
    backend: str = "ed25519"
    keys_dir: Path | None = None
    gpg: str = "gpg"

    # Reserved filenames inside output units
    skip_marker: str = DEFAULT_SKIP_MARKER
    input_manifest: str = DEFAULT_INPUT_MANIFEST
    exclude_patterns: tuple[str, ...] = field(default_factory=lambda: DEFAULT_EXCLUDE_PATTERNS)

    def __post_init__(self) -> None:
        for name in _PATH_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, Path):
                setattr(self, name, Path(value))

        for name in _STR_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, str):
                raise ConfigurationError(
                    f"{name} must be a string, got {type(value).__name__} (quote it in YAML)"
                )

        if not isinstance(self.no_sign, bool):
            raise ConfigurationError(
                f"no_sign must be true or false, got {self.no_sign!r}"
            )

        patterns = self.exclude_patterns
        if not isinstance(patterns, (list, tuple)) or not all(isinstance(p, str) for p in patterns):
            raise ConfigurationError(
                f"exclude_patterns must be a list of strings, got {patterns!r}"
            )
        self.exclude_patterns = tuple(patterns)

        if self.backend not in BACKENDS:
            raise ConfigurationError(
                f"backend must be one of {', '.join(BACKENDS)}, got {self.backend!r}"
            )

    @property
    def effective_backend(self) -> str:
        """Backend actually used, accounting for no_sign."""
        return "none" if self.no_sign else self.backend

    def signer_identity(self) -> SignerIdentity:
        """Build the signer identity from key id and optional display name."""
        return SignerIdentity(key_id=self.signer, display_name=self.signer_name)

    def validate(self) -> None:
        """Check the settings a run needs are present.

        Raises:
            ConfigurationError: Naming the first missing setting
        """
        required = {
            "base_dir": self.base_dir,
            "version": self.version,
            "signer": self.signer,
            "sigs_root": self.sigs_root,
        }
        for name, value in required.items():
            if not value:
                raise ConfigurationError(
                    f"Missing required setting: {name} "
                    f"(option --{name.replace('_', '-')} or {ENV_PREFIX}{name.upper()})"
                )

    def merged(self, **overrides: Any) -> AttestConfig:
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AttestConfig:
        """Create configuration from dictionary (e.g., YAML)."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: Path) -> AttestConfig:
        """Load configuration from a YAML file."""
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config {path} must contain a mapping")
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, base: AttestConfig | None = None) -> AttestConfig:
        """
        Layer environment variables over base (or defaults).

        Environment variables:
            BUILDATTEST_BASE_DIR: Directory whose subdirectories are output units
            BUILDATTEST_VERSION: Version being attested
            BUILDATTEST_SIGNER: Signer key id
            BUILDATTEST_SIGNER_NAME: Signer display name
            BUILDATTEST_SIGS_ROOT: Signature repository root
            BUILDATTEST_NO_SIGN: Disable signing (true/false)
            BUILDATTEST_BACKEND: Signing backend (ed25519/gpg/none)
            BUILDATTEST_KEYS_DIR: Directory holding <key_id>.pem files
        """
        config = base or cls()
        overrides: dict[str, Any] = {}
        for name in ("base_dir", "version", "signer", "signer_name", "sigs_root", "backend", "keys_dir"):
            value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if value:
                overrides[name] = value

        no_sign = os.getenv(f"{ENV_PREFIX}NO_SIGN")
        if no_sign is not None:
            overrides["no_sign"] = no_sign.strip().lower() in _TRUE_VALUES

        return config.merged(**overrides)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "base_dir": str(self.base_dir) if self.base_dir else None,
            "version": self.version,
            "signer": self.signer,
            "signer_name": self.signer_name or self.signer,
            "sigs_root": str(self.sigs_root) if self.sigs_root else None,
            "no_sign": self.no_sign,
            "backend": self.effective_backend,
            "keys_dir": str(self.keys_dir) if self.keys_dir else None,
            "skip_marker": self.skip_marker,
            "input_manifest": self.input_manifest,
            "exclude_patterns": list(self.exclude_patterns),
        }
