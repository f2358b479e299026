"""Build Attest - signed, reproducible-build attestations.

Hashes the outputs of a build, one manifest per output unit, and publishes
each manifest with an optional detached signature into a shared signature
repository keyed by version, unit and signer.
"""

from __future__ import annotations

__version__ = "0.3.0"

from buildattest.config import AttestConfig
from buildattest.errors import (
    AttestationError,
    BuildDefectError,
    ConfigurationError,
    RepositoryError,
    SigningError,
    UnitAttestationError,
)
from buildattest.manifest import HashManifest, HashManifestBuilder, ManifestEntry
from buildattest.orchestrator import AttestationOrchestrator, AttestationReport, UnitOutcome, UnitStatus
from buildattest.repository import LocalSignatureRepository, MemorySignatureRepository, SignatureRepository
from buildattest.signing import (
    ArmoredSignature,
    Ed25519Backend,
    GpgBackend,
    NoopBackend,
    SigningBackend,
    create_backend,
)
from buildattest.units import OutputUnit, SignerIdentity, discover_units

__all__ = [
    "__version__",
    "ArmoredSignature",
    "AttestConfig",
    "AttestationError",
    "AttestationOrchestrator",
    "AttestationReport",
    "BuildDefectError",
    "ConfigurationError",
    "Ed25519Backend",
    "GpgBackend",
    "HashManifest",
    "HashManifestBuilder",
    "LocalSignatureRepository",
    "ManifestEntry",
    "MemorySignatureRepository",
    "NoopBackend",
    "OutputUnit",
    "RepositoryError",
    "SignatureRepository",
    "SignerIdentity",
    "SigningBackend",
    "SigningError",
    "UnitAttestationError",
    "UnitOutcome",
    "UnitStatus",
    "create_backend",
    "discover_units",
]
