"""Attestation pipeline: discover units, build manifests, publish records."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from buildattest.errors import AttestationError, ConfigurationError, UnitAttestationError
from buildattest.manifest import HashManifestBuilder
from buildattest.repository import SignatureRepository
from buildattest.signing import SigningBackend
from buildattest.units import (
    DEFAULT_INPUT_MANIFEST,
    DEFAULT_SKIP_MARKER,
    OutputUnit,
    SignerIdentity,
    discover_units,
)

logger = logging.getLogger(__name__)


class UnitStatus(Enum):
    """Outcome of processing one output unit."""
    SKIPPED_BY_MARKER = "skipped_by_marker"
    ALREADY_ATTESTED = "already_attested"
    NEWLY_ATTESTED = "newly_attested"


@dataclass
class UnitOutcome:
    """What happened to one unit, and where its record lives."""

    unit_name: str
    status: UnitStatus
    record_path: Path | None = None
    signed: bool = False
    entry_count: int = 0
    manifest_sha256: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "unit": self.unit_name,
            "status": self.status.value,
            "record_path": str(self.record_path) if self.record_path else None,
            "signed": self.signed,
            "entry_count": self.entry_count,
            "manifest_sha256": self.manifest_sha256,
        }


@dataclass
class AttestationReport:
    """Aggregated result of an attestation run."""

    version: str
    signer: str
    outcomes: list[UnitOutcome] = field(default_factory=list)
    signing_skipped: bool = False
    cancelled: bool = False
    pending: list[str] = field(default_factory=list)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    )

    def _with_status(self, status: UnitStatus) -> list[UnitOutcome]:
        return [o for o in self.outcomes if o.status is status]

    @property
    def newly_attested(self) -> list[UnitOutcome]:
        return self._with_status(UnitStatus.NEWLY_ATTESTED)

    @property
    def already_attested(self) -> list[UnitOutcome]:
        return self._with_status(UnitStatus.ALREADY_ATTESTED)

    @property
    def skipped_by_marker(self) -> list[UnitOutcome]:
        return self._with_status(UnitStatus.SKIPPED_BY_MARKER)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "version": self.version,
            "signer": self.signer,
            "timestamp": self.timestamp,
            "signing_skipped": self.signing_skipped,
            "cancelled": self.cancelled,
            "pending": list(self.pending),
            "summary": {
                "newly_attested": len(self.newly_attested),
                "already_attested": len(self.already_attested),
                "skipped_by_marker": len(self.skipped_by_marker),
            },
            "outcomes": [o.to_dict() for o in self.outcomes],
        }

    def write_json(self, path: Path, config: dict[str, Any] | None = None) -> None:
        """Write report to JSON file, optionally embedding the effective config."""
        data = self.to_dict()
        if config is not None:
            data["config"] = config
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)

    def to_markdown(self) -> str:
        """Render a human-readable summary."""
        lines = [
            f"# Attestation Report: {self.version}",
            "",
            f"**Signer:** {self.signer}",
            f"**Timestamp:** {self.timestamp}",
            "",
        ]

        if self.signing_skipped:
            lines.extend(["Signing was skipped: signing is disabled for this run.", ""])

        sections = [
            ("Newly attested", self.newly_attested),
            ("Already attested (no new signature written)", self.already_attested),
            ("Skipped by marker", self.skipped_by_marker),
        ]
        for title, outcomes in sections:
            if not outcomes:
                continue
            lines.extend([f"## {title}", ""])
            for outcome in outcomes:
                where = f" → `{outcome.record_path}`" if outcome.record_path else ""
                lines.append(f"- {outcome.unit_name}{where}")
            lines.append("")

        if self.cancelled:
            lines.extend(["## Not started (cancelled)", ""])
            lines.extend(f"- {name}" for name in self.pending)
            lines.append("")

        return "\n".join(lines)


class AttestationOrchestrator:
    """Drives discovery, manifest building, publishing and signing.

    Units are processed one at a time in discovery order. A failure in any
    unit removes that unit's partial record and aborts the run; records
    completed earlier are kept.
    """

    def __init__(
        self,
        repository: SignatureRepository,
        backend: SigningBackend,
        builder: HashManifestBuilder | None = None,
        skip_marker: str = DEFAULT_SKIP_MARKER,
        input_manifest: str = DEFAULT_INPUT_MANIFEST,
    ) -> None:
        self.repository = repository
        self.backend = backend
        self.builder = builder or HashManifestBuilder()
        self.skip_marker = skip_marker
        self.input_manifest = input_manifest

    def preflight(self, signer: SignerIdentity) -> None:
        """Check the repository and the signer credential before any unit work.

        Raises:
            ConfigurationError: If either is unusable
        """
        self.repository.check_ready()
        if not self.backend.can_sign(signer.key_id):
            raise ConfigurationError(
                f"Signer key {signer.key_id!r} is not usable with the {self.backend.name} backend"
            )

    def run(
        self,
        base_dir: Path,
        version: str,
        signer: SignerIdentity,
        should_stop: Callable[[], bool] | None = None,
    ) -> AttestationReport:
        """Attest every output unit under base_dir.

        Args:
            base_dir: Directory whose immediate subdirectories are output units
            version: Version being attested
            signer: Identity the records are filed under
            should_stop: Polled between units; when it returns True the run
                stops and the remaining units are reported as pending

        Returns:
            AttestationReport

        Raises:
            ConfigurationError: Before any unit is processed
            UnitAttestationError: When a unit fails (after its rollback)
        """
        self.preflight(signer)
        units = discover_units(base_dir, self.skip_marker, self.input_manifest)

        report = AttestationReport(
            version=version,
            signer=signer.display_name,
            signing_skipped=not self.backend.enabled,
        )
        if report.signing_skipped:
            logger.warning("Signing disabled: records for %s will not be signed", signer.display_name)

        for index, unit in enumerate(units):
            if should_stop is not None and should_stop():
                report.cancelled = True
                report.pending = [u.name for u in units[index:]]
                logger.warning("Run cancelled; %d unit(s) not started", len(report.pending))
                break
            report.outcomes.append(self.attest_unit(unit, version, signer))

        for outcome in report.already_attested:
            logger.info(
                "%s already attested by %s at %s; no new signature written",
                outcome.unit_name,
                signer.display_name,
                outcome.record_path,
            )
        return report

    def attest_unit(
        self,
        unit: OutputUnit,
        version: str,
        signer: SignerIdentity,
    ) -> UnitOutcome:
        """Classify and, if needed, attest a single unit."""
        if unit.has_skip_marker:
            logger.info("Skipping %s: %s present", unit.name, self.skip_marker)
            return UnitOutcome(unit_name=unit.name, status=UnitStatus.SKIPPED_BY_MARKER)

        record = self.repository.record_path(version, unit.name, signer)
        if self.repository.exists(version, unit.name, signer):
            return UnitOutcome(
                unit_name=unit.name,
                status=UnitStatus.ALREADY_ATTESTED,
                record_path=record,
            )

        try:
            manifest = self.builder.build(unit)
            with self.repository.staged_record(version, unit.name, signer, manifest) as record:
                if self.backend.enabled:
                    signature = self.backend.sign(signer.key_id, manifest.to_bytes())
                    self.repository.write_signature(record, signature)
        except (AttestationError, OSError) as e:
            raise UnitAttestationError(unit.name, record, str(e)) from e

        logger.info("Attested %s (%d entries) at %s", unit.name, len(manifest), record)
        return UnitOutcome(
            unit_name=unit.name,
            status=UnitStatus.NEWLY_ATTESTED,
            record_path=record,
            signed=self.backend.enabled,
            entry_count=len(manifest),
            manifest_sha256=manifest.digest(),
        )
