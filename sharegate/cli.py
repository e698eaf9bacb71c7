"""
CLI management tool for ShareGate.

Works directly on the filesystem store, so it can mint and revoke tokens
whether or not the server is running.
"""

from datetime import timedelta

import click

from sharegate.config import Config
from sharegate.core.errors import ShareGateError
from sharegate.core.utils import resource_url
from sharegate.schemas import Share, utcnow
from sharegate.services.resource_store import ResourceStore


def _expires(hours):
    return utcnow() + timedelta(hours=hours) if hours else None


@click.group()
@click.option('--config', '-c', 'config_path', type=click.Path(dir_okay=False), help='YAML configuration file')
@click.pass_context
def cli(ctx, config_path):
    """ShareGate CLI Management Tool."""
    ctx.obj = Config.load(config_path)


def _store(ctx) -> ResourceStore:
    return ResourceStore.from_config(ctx.obj)


def _link(ctx, kind, token) -> str:
    return resource_url(ctx.obj.server.link_base(), kind, token)


@cli.command()
@click.pass_context
def serve(ctx):
    """Run the user and admin apps."""
    import asyncio
    from sharegate.app import configure_logging, serve as run_servers

    configure_logging(ctx.obj)
    asyncio.run(run_servers(ctx.obj))


@cli.command()
@click.argument('files', nargs=-1, required=True)
@click.option('--label', '-l', help='Title shown to the recipient')
@click.option('--expires-hours', '-e', type=float, help='Hours until the share stops working')
@click.pass_context
def share(ctx, files, label, expires_hours):
    """Share FILES (relative to the files root)."""
    try:
        token = _store(ctx).create_share(files, expires=_expires(expires_hours), label=label)
    except ShareGateError as e:
        raise click.ClickException(e.message)
    click.echo(f'[OK] Share created: {_link(ctx, "share", token)}')
    click.echo(token)


@cli.command()
@click.argument('name')
@click.option('--max-file-size', type=int, help='Per-file limit in bytes')
@click.option('--quota', type=int, help='Total bytes the upload may receive')
@click.option('--expires-hours', '-e', type=float, help='Hours until the upload stops working')
@click.pass_context
def upload(ctx, name, max_file_size, quota, expires_hours):
    """Create an upload destination called NAME."""
    if quota is None:
        quota = ctx.obj.logic.default_quota
    try:
        token = _store(ctx).create_upload(
            name, max_file_size=max_file_size, quota=quota, expires=_expires(expires_hours)
        )
    except ShareGateError as e:
        raise click.ClickException(e.message)
    click.echo(f'[OK] Upload created: {_link(ctx, "upload", token)}')
    click.echo(token)


@cli.command(name='list')
@click.pass_context
def list_resources(ctx):
    """List all shares and uploads."""
    resources = _store(ctx).list_resources()
    if not resources:
        click.echo('[INFO] No shares or uploads.')
        return

    for i, resource in enumerate(resources, 1):
        state = ' (expired)' if resource.is_expired() else ''
        if isinstance(resource, Share):
            detail = f'{len(resource.files)} file(s)'
        else:
            detail = f'-> {resource.directory}'
        click.echo(f'{i}. {resource.kind} {resource.token} {detail}{state}')


@cli.command()
@click.argument('token')
@click.option('--purge', is_flag=True, help='Also delete files received by an upload')
@click.pass_context
def revoke(ctx, token, purge):
    """Delete the share or upload bound to TOKEN."""
    try:
        resource = _store(ctx).delete(token, purge=purge)
    except ShareGateError as e:
        raise click.ClickException(e.message)
    click.echo(f'[OK] {resource.kind.capitalize()} revoked.')


@cli.command()
@click.pass_context
def cleanup(ctx):
    """Remove expired resources and stale partial uploads (server must be stopped)."""
    store = _store(ctx)
    expired = store.purge_expired()
    partials = store.cleanup_partials()
    click.echo(f'[OK] Removed {expired} expired resource(s) and {partials} partial upload(s).')


if __name__ == '__main__':
    cli()
