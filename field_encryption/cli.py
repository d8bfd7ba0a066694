"""
Field encryption command line tool.

Usage:
    field-encryption generate-key
    field-encryption encrypt poolApiKey "pool-secret"
    field-encryption decrypt poolApiKey '{"version":"1",...}'
    field-encryption migrate --target swarms.pool_api_key --target swarms.environment_variables:env_vars
    field-encryption rotate --target swarms.pool_api_key --dry-run

Or run directly:
    python -m field_encryption.cli

Configuration comes from TOKEN_ENCRYPTION_KEY, TOKEN_ENCRYPTION_KEY_ID,
ROTATION_OLD_KEYS and DATABASE_URL (environment or .env file).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence, Tuple, Union

import click

from .config import EncryptionSettings
from .crypto import generate_key
from .errors import EncryptionError
from .migration import FieldMigrator, MigrationStats, RotationStats
from .postgres import PostgresFieldStore, create_pool
from .service import EncryptionService
from .storage import ColumnTarget


def _settings(ctx: click.Context) -> EncryptionSettings:
    try:
        return EncryptionSettings.from_env(ctx.obj.get("env_file"))
    except EncryptionError as e:
        raise click.ClickException(str(e))


def _service(ctx: click.Context) -> EncryptionService:
    settings = _settings(ctx)
    try:
        return EncryptionService.from_settings(settings)
    except EncryptionError as e:
        raise click.ClickException(str(e))


def _parse_targets(values: Sequence[str]) -> Tuple[ColumnTarget, ...]:
    try:
        return tuple(ColumnTarget.parse(value) for value in values)
    except EncryptionError as e:
        raise click.BadParameter(str(e), param_hint="--target")


async def _run_bulk(
    settings: EncryptionSettings,
    targets: Sequence[ColumnTarget],
    dry_run: bool,
    operation: str,
) -> Union[MigrationStats, RotationStats]:
    service = EncryptionService.from_settings(settings)
    pool = await create_pool(settings.require_database_url())
    try:
        migrator = FieldMigrator(service, PostgresFieldStore(pool), dry_run=dry_run)
        if operation == "rotate":
            return await migrator.rotate(targets)
        return await migrator.encrypt_existing(targets)
    finally:
        await pool.close()


def _echo_stats(title: str, stats: Union[MigrationStats, RotationStats], dry_run: bool) -> None:
    click.echo(f"{title}{' (dry run)' if dry_run else ''}:")
    for name, value in vars(stats).items():
        click.echo(f"  {name:<12} {value}")


@click.group()
@click.option("--env-file", type=click.Path(dir_okay=False), default=None,
              help="Load settings from this .env file")
@click.option("--log-level", default="WARNING",
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Logging verbosity")
@click.pass_context
def cli(ctx: click.Context, env_file: Optional[str], log_level: str) -> None:
    """Field-level encryption for secrets stored at rest."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["env_file"] = env_file


@cli.command("generate-key")
def generate_key_cmd() -> None:
    """Print a new random 256-bit key as hex."""
    click.echo(generate_key().to_hex())


@cli.command("encrypt")
@click.argument("field")
@click.argument("value")
@click.option("--key-id", default=None, help="Encrypt with this registered key instead of the active one")
@click.pass_context
def encrypt_cmd(ctx: click.Context, field: str, value: str, key_id: Optional[str]) -> None:
    """Encrypt VALUE for FIELD and print the envelope JSON."""
    service = _service(ctx)
    try:
        if key_id:
            envelope = service.encrypt_field_with_key_id(field, value, key_id)
        else:
            envelope = service.encrypt_field(field, value)
    except EncryptionError as e:
        raise click.ClickException(str(e))
    click.echo(envelope.to_json())


@cli.command("decrypt")
@click.argument("field")
@click.argument("value")
@click.pass_context
def decrypt_cmd(ctx: click.Context, field: str, value: str) -> None:
    """Decrypt a stored VALUE of FIELD and print the plaintext."""
    service = _service(ctx)
    try:
        click.echo(service.decrypt_field(field, value))
    except EncryptionError as e:
        raise click.ClickException(str(e))


@cli.command("migrate")
@click.option("--target", "targets", multiple=True, required=True,
              help="table.column or table.column:env_vars (repeatable)")
@click.option("--dry-run", is_flag=True, help="Report what would change without writing")
@click.pass_context
def migrate_cmd(ctx: click.Context, targets: Tuple[str, ...], dry_run: bool) -> None:
    """Encrypt plaintext values that predate field encryption."""
    settings = _settings(ctx)
    parsed = _parse_targets(targets)
    try:
        stats = asyncio.run(_run_bulk(settings, parsed, dry_run, "migrate"))
    except EncryptionError as e:
        raise click.ClickException(str(e))
    _echo_stats("Migration complete", stats, dry_run)
    if stats.errors:
        ctx.exit(1)


@cli.command("rotate")
@click.option("--target", "targets", multiple=True, required=True,
              help="table.column or table.column:env_vars (repeatable)")
@click.option("--dry-run", is_flag=True, help="Report what would change without writing")
@click.pass_context
def rotate_cmd(ctx: click.Context, targets: Tuple[str, ...], dry_run: bool) -> None:
    """Re-encrypt values onto the active key (old keys from ROTATION_OLD_KEYS)."""
    settings = _settings(ctx)
    parsed = _parse_targets(targets)
    try:
        stats = asyncio.run(_run_bulk(settings, parsed, dry_run, "rotate"))
    except EncryptionError as e:
        raise click.ClickException(str(e))
    _echo_stats("Rotation complete", stats, dry_run)
    if stats.errors:
        ctx.exit(1)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
