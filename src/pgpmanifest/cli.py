"""pgpmanifest CLI: key generation, message composition and verification."""

from __future__ import annotations

import json
import logging
import sys
import traceback
from pathlib import Path

import click

from pgpmanifest import __version__, crypto, mime
from pgpmanifest.composer import MessageComposer
from pgpmanifest.config import Settings
from pgpmanifest.verifier import MessageVerifier, VerificationResult


def handle_error(error: Exception, debug: bool) -> None:
    """Handle errors with structured output.

    Args:
        error: The exception that occurred
        debug: Whether to show full traceback
    """
    if debug:
        traceback.print_exc()
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


@click.group()
@click.version_option(version=__version__, prog_name="pgpmanifest")
@click.option('--config', '-c', type=click.Path(exists=True, path_type=Path), help='YAML settings file')
@click.option('--verbose', '-v', is_flag=True, help='Log progress at INFO level')
@click.option('--debug', is_flag=True, help='Enable debug mode (show full tracebacks)')
@click.pass_context
def cli(ctx: click.Context, config: Path | None, verbose: bool, debug: bool):
    """Compose and verify encrypted messages with per-segment manifests."""
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug
    try:
        settings = Settings.load(config)
    except (OSError, ValueError) as e:
        handle_error(e, debug)

    level = settings.logging_level
    if verbose:
        level = min(level, logging.INFO)
    if debug:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    ctx.obj['settings'] = settings


@cli.command()
@click.option('--private-out', required=True, type=click.Path(path_type=Path), help='Where to write the private key')
@click.option('--public-out', required=True, type=click.Path(path_type=Path), help='Where to write the public key')
@click.option('--passphrase', envvar='PGPMANIFEST_PASSPHRASE', default=None, help='Passphrase protecting the private key')
@click.pass_context
def keygen(ctx: click.Context, private_out: Path, public_out: Path, passphrase: str | None):
    """Generate a recipient key pair."""
    debug = ctx.obj.get('debug', False)
    try:
        private_pem, public_pem = crypto.generate_keypair(passphrase)
        private_out.parent.mkdir(parents=True, exist_ok=True)
        public_out.parent.mkdir(parents=True, exist_ok=True)
        private_out.write_bytes(private_pem)
        private_out.chmod(0o600)
        public_out.write_bytes(public_pem)
        click.echo(f"Private key written to: {private_out}")
        click.echo(f"Public key written to: {public_out}")
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.option('--public-key', required=True, type=click.Path(exists=True, path_type=Path), help='Recipient public key (PEM)')
@click.option('--from', 'sender', default='sender@example.org', help='Sender of the email')
@click.option('--to', default='recipient@example.org', help='Recipient(s) of the email')
@click.option('--cc', default=None, help='Carbon copy recipient(s)')
@click.option('--subject', default='Very secret email', help='Subject of the email')
@click.option('--body-path', required=True, type=click.Path(exists=True, path_type=Path), help='File containing the body text')
@click.option('--attachment', '-a', 'attachments', multiple=True, type=click.Path(exists=True, path_type=Path), help='Attachment to include (repeatable)')
@click.option('--out', '-o', type=click.Path(path_type=Path), help='Output file (default: stdout)')
@click.pass_context
def compose(
    ctx: click.Context,
    public_key: Path,
    sender: str,
    to: str,
    cc: str | None,
    subject: str,
    body_path: Path,
    attachments: tuple[Path, ...],
    out: Path | None,
):
    """Compose an encrypted message with a manifest."""
    debug = ctx.obj.get('debug', False)
    try:
        composer = MessageComposer(
            crypto.load_public_key(public_key.read_bytes()),
            settings=_settings(ctx),
        )
        message = composer.compose(
            sender=sender,
            to=to,
            cc=cc,
            subject=subject,
            body=body_path.read_bytes(),
            attachments=[(path.name, path.read_bytes()) for path in attachments],
        )
        data = mime.render(message)

        if out:
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_bytes(data)
            click.echo(f"Message {message.message_id} written to: {out}", err=True)
        else:
            click.echo(data.decode("utf-8"), nl=False)
    except Exception as e:
        handle_error(e, debug)


def _print_result(result: VerificationResult, headers: dict[str, str]) -> None:
    click.echo("Original headers:")
    for name, value in headers.items():
        click.echo(f"\t{name}: {value}")

    click.echo("Manifest headers:")
    for name, value in sorted(result.manifest.headers.items()):
        click.echo(f"\t{name}: {value.as_scalar()}")

    click.echo("Email parts in the manifest:")
    for part_result in result.parts:
        click.echo(f"\t- ID: {part_result.part.id}")
        click.echo(f"\t  Hash: {part_result.part.hash}")
        if part_result.part.filename:
            click.echo(f"\t  Filename: {part_result.part.filename}")
        click.echo(f"\t  Status: {part_result.status.value}")
        if part_result.error is not None:
            click.echo(f"\t  Error: {part_result.error}")

    if result.body is not None:
        click.echo("Email's body:")
        for line in result.body.split("\n"):
            click.echo(f"\t{line}")

    for attachment in result.attachments:
        click.echo(f"Attachment {attachment.part.id}:")
        click.echo(f"\tFilename: {attachment.filename}")
        click.echo(f"\tContent type: {attachment.content_type}")
        click.echo(f"\tSize: {len(attachment.content or b'')} bytes")

    click.echo(f"Status: {'VALID' if result.valid else 'INVALID'}")


def _extract(result: VerificationResult, extract_dir: Path) -> None:
    extract_dir.mkdir(parents=True, exist_ok=True)
    body = result.get("body")
    if body is not None and body.content is not None:
        (extract_dir / "body.txt").write_bytes(body.content)
    for attachment in result.attachments:
        # Never trust a manifest filename as a path
        name = Path(attachment.filename or attachment.part.id).name
        (extract_dir / name).write_bytes(attachment.content or b"")


@cli.command()
@click.option('--private-key', required=True, type=click.Path(exists=True, path_type=Path), help='Private key (PEM)')
@click.option('--passphrase', envvar='PGPMANIFEST_PASSPHRASE', default=None, help='Passphrase of the private key')
@click.option('--input', '-i', 'input_path', required=True, type=click.Path(exists=True, path_type=Path), help='Message to verify')
@click.option('--extract-dir', type=click.Path(path_type=Path), help='Write verified body and attachments here')
@click.option('--report', type=click.Path(path_type=Path), help='Write a markdown verification report')
@click.option('--json', 'as_json', is_flag=True, help='Print the result as JSON')
@click.pass_context
def verify(
    ctx: click.Context,
    private_key: Path,
    passphrase: str | None,
    input_path: Path,
    extract_dir: Path | None,
    report: Path | None,
    as_json: bool,
):
    """Verify an encrypted message against its manifest."""
    debug = ctx.obj.get('debug', False)
    try:
        verifier = MessageVerifier.from_private_key(private_key.read_bytes(), passphrase)
        tree = mime.parse(input_path.read_bytes())
        result = verifier.verify(tree)

        if as_json:
            click.echo(json.dumps(result.to_dict(), indent=2, sort_keys=True))
        else:
            _print_result(result, tree.headers)

        if report:
            report.parent.mkdir(parents=True, exist_ok=True)
            report.write_text(result.to_markdown(), encoding="utf-8")
        if extract_dir:
            _extract(result, extract_dir)
    except Exception as e:
        handle_error(e, debug)

    if not result.valid:
        sys.exit(1)


@cli.command()
@click.option('--private-key', required=True, type=click.Path(exists=True, path_type=Path), help='Private key (PEM)')
@click.option('--passphrase', envvar='PGPMANIFEST_PASSPHRASE', default=None, help='Passphrase of the private key')
@click.option('--input', '-i', 'input_path', required=True, type=click.Path(exists=True, path_type=Path), help='Message to inspect')
@click.pass_context
def inspect(ctx: click.Context, private_key: Path, passphrase: str | None, input_path: Path):
    """Decrypt and print a message's manifest without verifying segments."""
    debug = ctx.obj.get('debug', False)
    try:
        verifier = MessageVerifier.from_private_key(private_key.read_bytes(), passphrase)
        manifest = verifier.find_manifest(mime.parse(input_path.read_bytes()))
        click.echo(json.dumps(manifest.to_dict(), indent=2, sort_keys=True))
    except Exception as e:
        handle_error(e, debug)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
