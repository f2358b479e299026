"""Signing backends for detached manifest signatures.

Backends:
- ed25519: Ed25519 keys held as PEM files (``<keys_dir>/<key_id>.pem``) or
  one raw key supplied through environment variables:
  - BUILDATTEST_SIGNING_PRIVATE_KEY: Base64-encoded 32-byte private key
  - BUILDATTEST_SIGNING_KEY_ID: Key id the environment key answers to
- gpg: delegates to an external ``gpg`` executable
- none: signing disabled; manifests are still published, unsigned
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import shutil
import subprocess
import textwrap
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from buildattest.errors import ConfigurationError, SigningError

logger = logging.getLogger(__name__)

ENV_PRIVATE_KEY = "BUILDATTEST_SIGNING_PRIVATE_KEY"
ENV_KEY_ID = "BUILDATTEST_SIGNING_KEY_ID"

ARMOR_LABEL = "BUILDATTEST SIGNATURE"
BACKENDS = ("ed25519", "gpg", "none")


@dataclass
class ArmoredSignature:
    """Detached signature in armored text form."""

    key_id: str
    public_key: bytes
    signature: bytes
    algorithm: str = "Ed25519"

    def to_text(self) -> str:
        """Serialize to armored text."""
        body = textwrap.wrap(base64.b64encode(self.signature).decode("ascii"), 64)
        lines = [
            f"-----BEGIN {ARMOR_LABEL}-----",
            f"Key-Id: {self.key_id}",
            f"Algorithm: {self.algorithm}",
            f"Public-Key: {base64.b64encode(self.public_key).decode('ascii')}",
            "",
            *body,
            f"-----END {ARMOR_LABEL}-----",
        ]
        return "\n".join(lines) + "\n"

    @classmethod
    def from_text(cls, text: str) -> ArmoredSignature:
        """Parse armored text, as read back from a published record.

        Consumers verifying a record use this to recover the key id, public
        key and raw signature bytes from ``SHA256SUMS.asc``.

        Raises:
            SigningError: If the armor is malformed
        """
        lines = text.strip().splitlines()
        begin = f"-----BEGIN {ARMOR_LABEL}-----"
        end = f"-----END {ARMOR_LABEL}-----"
        if len(lines) < 3 or lines[0] != begin or lines[-1] != end:
            raise SigningError("Missing signature armor")

        try:
            blank = lines.index("")
        except ValueError:
            raise SigningError("Missing blank line after signature headers")

        headers: dict[str, str] = {}
        for line in lines[1:blank]:
            key, sep, value = line.partition(": ")
            if not sep:
                raise SigningError(f"Malformed signature header: {line!r}")
            headers[key] = value

        try:
            return cls(
                key_id=headers["Key-Id"],
                algorithm=headers.get("Algorithm", "Ed25519"),
                public_key=base64.b64decode(headers.get("Public-Key", ""), validate=True),
                signature=base64.b64decode("".join(lines[blank + 1:-1]), validate=True),
            )
        except KeyError:
            raise SigningError("Signature armor has no Key-Id header")
        except binascii.Error as e:
            raise SigningError(f"Invalid base64 in signature armor: {e}") from e


class SigningBackend(ABC):
    """Produces detached signatures for a key identifier."""

    #: False only for the no-op backend; the pipeline then skips signing.
    enabled: bool = True

    @property
    @abstractmethod
    def name(self) -> str:
        """Return backend name."""
        pass

    @abstractmethod
    def can_sign(self, key_id: str) -> bool:
        """Pre-flight check that key_id is usable for signing."""
        pass

    @abstractmethod
    def sign(self, key_id: str, data: bytes) -> bytes:
        """Sign data and return the armored detached signature.

        Raises:
            SigningError: If the signature cannot be produced
        """
        pass


class NoopBackend(SigningBackend):
    """Backend used when signing is disabled."""

    enabled = False

    @property
    def name(self) -> str:
        return "none"

    def can_sign(self, key_id: str) -> bool:
        return True

    def sign(self, key_id: str, data: bytes) -> bytes:
        raise SigningError("Signing is disabled")


class Ed25519Backend(SigningBackend):
    """Ed25519 signer backed by the cryptography library."""

    def __init__(
        self,
        keys_dir: Path | None = None,
        keys: dict[str, Ed25519PrivateKey] | None = None,
    ) -> None:
        self.keys_dir = keys_dir
        self._keys: dict[str, Ed25519PrivateKey] = dict(keys or {})

    @property
    def name(self) -> str:
        return "ed25519"

    @classmethod
    def from_env(cls, keys_dir: Path | None = None) -> Ed25519Backend:
        """Create a backend, adding the environment key if one is set.

        Raises:
            ConfigurationError: If the environment key is malformed
        """
        keys: dict[str, Ed25519PrivateKey] = {}
        priv_b64 = os.environ.get(ENV_PRIVATE_KEY)
        if priv_b64:
            key_id = os.environ.get(ENV_KEY_ID)
            if not key_id:
                raise ConfigurationError(f"{ENV_PRIVATE_KEY} is set but {ENV_KEY_ID} is not")
            try:
                raw = base64.b64decode(priv_b64, validate=True)
                keys[key_id] = Ed25519PrivateKey.from_private_bytes(raw)
            except (binascii.Error, ValueError) as e:
                raise ConfigurationError(f"Invalid key in {ENV_PRIVATE_KEY}: {e}") from e
        return cls(keys_dir=keys_dir, keys=keys)

    def _key_file(self, key_id: str) -> Path | None:
        if self.keys_dir is None or "/" in key_id or key_id in (".", ".."):
            return None
        return self.keys_dir / f"{key_id}.pem"

    def _load_key(self, key_id: str) -> Ed25519PrivateKey | None:
        if key_id in self._keys:
            return self._keys[key_id]

        key_file = self._key_file(key_id)
        if key_file is None or not key_file.is_file():
            return None

        try:
            key = serialization.load_pem_private_key(key_file.read_bytes(), password=None)
        except OSError as e:
            raise SigningError(f"Cannot read signing key {key_file}: {e}") from e
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Cannot load signing key {key_file}: {e}") from e
        if not isinstance(key, Ed25519PrivateKey):
            raise SigningError(f"Not an Ed25519 key: {key_file}")

        self._keys[key_id] = key
        return key

    def can_sign(self, key_id: str) -> bool:
        try:
            return self._load_key(key_id) is not None
        except SigningError as e:
            logger.warning("Key %s is not usable: %s", key_id, e)
            return False

    def sign(self, key_id: str, data: bytes) -> bytes:
        key = self._load_key(key_id)
        if key is None:
            raise SigningError(f"No signing key available for {key_id}")

        public_key = key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        armored = ArmoredSignature(
            key_id=key_id,
            public_key=public_key,
            signature=key.sign(data),
        )
        return armored.to_text().encode("ascii")


class GpgBackend(SigningBackend):
    """Signs through an external gpg binary."""

    def __init__(self, gpg: str = "gpg", homedir: Path | None = None) -> None:
        self.gpg = gpg
        self.homedir = homedir

    @property
    def name(self) -> str:
        return "gpg"

    def _command(self, *args: str) -> list[str]:
        command = [self.gpg, "--batch", "--no-tty"]
        if self.homedir is not None:
            command.extend(["--homedir", str(self.homedir)])
        command.extend(args)
        return command

    def can_sign(self, key_id: str) -> bool:
        if shutil.which(self.gpg) is None:
            logger.warning("gpg executable not found: %s", self.gpg)
            return False

        result = subprocess.run(
            self._command("--dry-run", "--list-secret-keys", key_id),
            capture_output=True,
        )
        return result.returncode == 0

    def sign(self, key_id: str, data: bytes) -> bytes:
        try:
            result = subprocess.run(
                self._command("--detach-sign", "--armor", "--local-user", key_id, "--output", "-"),
                input=data,
                capture_output=True,
            )
        except OSError as e:
            raise SigningError(f"Cannot run {self.gpg}: {e}") from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise SigningError(f"gpg failed to sign with {key_id}: {stderr}")
        return result.stdout


def create_backend(
    name: str,
    keys_dir: Path | None = None,
    gpg: str = "gpg",
) -> SigningBackend:
    """Create a signing backend by name.

    Raises:
        ConfigurationError: If the backend name is unknown
    """
    if name == "none":
        return NoopBackend()
    if name == "ed25519":
        return Ed25519Backend.from_env(keys_dir=keys_dir)
    if name == "gpg":
        return GpgBackend(gpg=gpg)
    raise ConfigurationError(f"Unknown signing backend: {name} (expected one of {', '.join(BACKENDS)})")


def generate_key(keys_dir: Path, key_id: str) -> Path:
    """Generate an Ed25519 key and store it as ``<keys_dir>/<key_id>.pem``.

    Raises:
        ConfigurationError: If the key id is invalid or the key already exists
    """
    if not key_id or "/" in key_id or key_id in (".", ".."):
        raise ConfigurationError(f"Invalid key id: {key_id!r}")

    keys_dir.mkdir(parents=True, exist_ok=True)
    key_file = keys_dir / f"{key_id}.pem"
    if key_file.exists():
        raise ConfigurationError(f"Key already exists: {key_file}")

    private_key = Ed25519PrivateKey.generate()
    pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    key_file.write_bytes(pem)
    key_file.chmod(0o600)
    return key_file
