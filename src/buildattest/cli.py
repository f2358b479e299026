"""attestctl - publish signed build attestations."""

from __future__ import annotations

import logging
import sys
import traceback
from pathlib import Path

import click

from buildattest import __version__
from buildattest.config import AttestConfig
from buildattest.errors import AttestationError, UnitAttestationError
from buildattest.manifest import HashManifestBuilder
from buildattest.orchestrator import AttestationOrchestrator, AttestationReport
from buildattest.repository import LocalSignatureRepository
from buildattest.signing import BACKENDS, create_backend, generate_key
from buildattest.units import OutputUnit


def handle_error(error: Exception, debug: bool) -> None:
    """Report an error and exit non-zero.

    Args:
        error: The exception that occurred
        debug: Whether to show full traceback
    """
    if debug:
        traceback.print_exc()
    else:
        click.echo(f"Error: {error}", err=True)
    if isinstance(error, UnitAttestationError):
        click.echo(
            f"  Unit {error.unit_name} was rolled back; re-run to resume "
            "(completed units are kept).",
            err=True,
        )
    sys.exit(1)


def echo_report(report: AttestationReport) -> None:
    """Print the run summary."""
    if report.signing_skipped:
        click.echo("Signing skipped: signing is disabled (--no-sign); records are unsigned.")

    for outcome in report.newly_attested:
        suffix = "" if outcome.signed else " (unsigned)"
        click.echo(f"  attested  {outcome.unit_name} -> {outcome.record_path}{suffix}")
    for outcome in report.skipped_by_marker:
        click.echo(f"  skipped   {outcome.unit_name} (skip marker present)")

    if report.already_attested:
        click.echo("")
        click.echo("Already attested; no new signature was written for:")
        for outcome in report.already_attested:
            click.echo(f"  {outcome.unit_name}: {outcome.record_path}")

    if report.cancelled:
        click.echo(f"Cancelled before: {', '.join(report.pending)}", err=True)

    click.echo(
        f"{len(report.newly_attested)} attested, "
        f"{len(report.already_attested)} already attested, "
        f"{len(report.skipped_by_marker)} skipped"
    )


@click.group()
@click.version_option(version=__version__, prog_name="attestctl")
@click.option('--debug', is_flag=True, help='Enable debug mode (show full tracebacks)')
@click.option('--verbose', '-v', is_flag=True, help='Log progress to stderr')
@click.pass_context
def cli(ctx: click.Context, debug: bool, verbose: bool):
    """Build Attest CLI - signed manifests of build outputs."""
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug

    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


@cli.command()
@click.option('--base-dir', '-b', type=click.Path(path_type=Path), help='Directory whose subdirectories are output units')
@click.option('--version', 'version', type=str, help='Version being attested')
@click.option('--signer', '-s', type=str, help='Signer key id')
@click.option('--signer-name', type=str, help='Signer display name (default: key id)')
@click.option('--sigs-root', '-r', type=click.Path(path_type=Path), help='Signature repository root')
@click.option('--sign/--no-sign', default=None, help='Sign manifests (default) or publish them unsigned')
@click.option('--backend', type=click.Choice(BACKENDS), help='Signing backend')
@click.option('--keys-dir', type=click.Path(path_type=Path), help='Directory holding <key_id>.pem files')
@click.option('--config', '-c', type=click.Path(exists=True, path_type=Path), help='YAML configuration file')
@click.option('--report', type=click.Path(path_type=Path), help='Write the JSON report here')
@click.option('--summary-md', type=click.Path(path_type=Path), help='Write a Markdown summary here')
@click.pass_context
def attest(
    ctx: click.Context,
    base_dir: Path | None,
    version: str | None,
    signer: str | None,
    signer_name: str | None,
    sigs_root: Path | None,
    sign: bool | None,
    backend: str | None,
    keys_dir: Path | None,
    config: Path | None,
    report: Path | None,
    summary_md: Path | None,
):
    """Hash every output unit and publish signed manifests.

    Units that carry a skip marker are left alone, and units already
    attested by this signer for this version are reported, not rewritten.
    Safe to re-run after a failure.
    """
    debug = ctx.obj.get('debug', False)

    try:
        settings = AttestConfig.from_yaml(config) if config else AttestConfig()
        settings = AttestConfig.from_env(settings).merged(
            base_dir=base_dir,
            version=version,
            signer=signer,
            signer_name=signer_name,
            sigs_root=sigs_root,
            no_sign=None if sign is None else not sign,
            backend=backend,
            keys_dir=keys_dir,
        )
        settings.validate()

        orchestrator = AttestationOrchestrator(
            repository=LocalSignatureRepository(settings.sigs_root),
            backend=create_backend(settings.effective_backend, settings.keys_dir, settings.gpg),
            builder=HashManifestBuilder(settings.exclude_patterns),
            skip_marker=settings.skip_marker,
            input_manifest=settings.input_manifest,
        )
        result = orchestrator.run(settings.base_dir, settings.version, settings.signer_identity())

        echo_report(result)
        if report:
            result.write_json(report, config=settings.to_dict())
            click.echo(f"Report written to: {report}")
        if summary_md:
            summary_md.parent.mkdir(parents=True, exist_ok=True)
            summary_md.write_text(result.to_markdown(), encoding="utf-8")
            click.echo(f"Summary written to: {summary_md}")

    except AttestationError as e:
        handle_error(e, debug)


@cli.command()
@click.argument('unit_dir', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option('--input-manifest', default=None, help='Input manifest filename inside the unit')
@click.pass_context
def manifest(ctx: click.Context, unit_dir: Path, input_manifest: str | None):
    """Print the SHA256SUMS manifest of one output unit."""
    debug = ctx.obj.get('debug', False)

    try:
        defaults = AttestConfig()
        unit = OutputUnit.from_path(
            unit_dir,
            skip_marker=defaults.skip_marker,
            input_manifest_name=input_manifest or defaults.input_manifest,
        )
        click.echo(HashManifestBuilder(defaults.exclude_patterns).build(unit).to_text(), nl=False)
    except AttestationError as e:
        handle_error(e, debug)


@cli.command()
@click.option('--keys-dir', required=True, type=click.Path(path_type=Path), help='Directory to store the key in')
@click.option('--key-id', required=True, help='Key id (file name without .pem)')
@click.pass_context
def keygen(ctx: click.Context, keys_dir: Path, key_id: str):
    """Generate an Ed25519 signing key."""
    debug = ctx.obj.get('debug', False)

    try:
        key_file = generate_key(keys_dir, key_id)
        click.echo(f"Key written to: {key_file}")
    except AttestationError as e:
        handle_error(e, debug)


def main() -> None:
    """Entry point."""
    cli()


if __name__ == '__main__':
    main()
