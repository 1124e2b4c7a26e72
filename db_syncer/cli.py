import json
import os
import logging

import click

from .config_loader import ConfigLoader
from .daemon import DaemonManager
from .db_sync.sync_service import DatabaseSyncService
from .logging_config import setup_logging

logger = logging.getLogger(__name__)


def _load(config_path):
    try:
        loader = ConfigLoader(config_path)
        cfg = loader.load()
    except ValueError as e:
        raise click.ClickException(str(e))
    setup_logging(cfg)
    return cfg, loader.sync_settings()


def _daemon(config_path) -> DaemonManager:
    loader = ConfigLoader(config_path)
    try:
        cfg = loader.load()
        pid_file = cfg['daemon']['pid_file']
    except ValueError:
        # stop/status only need the PID file location
        pid_file = (loader.config.get('daemon') or {}).get('pid_file', './db_syncer.pid')
    return DaemonManager(pid_file)


config_option = click.option('--config', '-c', type=click.Path(exists=True),
                             help='Path to configuration file')


@click.group()
def cli():
    """Bidirectional polling database syncer"""
    pass


@cli.command()
@config_option
@click.option('--daemon', 'daemon_mode', is_flag=True, help='Run in the background')
def start(config, daemon_mode):
    """Start syncing on the configured interval"""
    cfg, settings = _load(config)
    daemon = DaemonManager(cfg['daemon']['pid_file'])

    if daemon_mode:
        argv = ['-m', 'db_syncer.cli', 'start']
        if config:
            argv += ['--config', config]
        try:
            pid = daemon.start_daemon(argv)
        except RuntimeError as e:
            raise click.ClickException(str(e))
        click.echo(f"Syncer started in background (PID {pid})")
        return

    if daemon.is_running() and daemon.read_pid_file() != os.getpid():
        raise click.ClickException(f"Syncer already running with PID {daemon.read_pid_file()}")

    service = DatabaseSyncService(cfg, settings)
    daemon.write_pid_file()
    try:
        service.start_sync_service()
    finally:
        daemon.remove_pid_file()


@cli.command()
@config_option
def once(config):
    """Run a single sync pass and print its summary as JSON"""
    cfg, settings = _load(config)
    service = DatabaseSyncService(cfg, settings)
    try:
        summary = service.sync_once()
    finally:
        service.close_connections()
    click.echo(json.dumps(summary.to_dict(), indent=2))
    if summary.failed_tables:
        raise SystemExit(1)


@cli.command()
@config_option
def stop(config):
    """Stop the background syncer"""
    if _daemon(config).stop_daemon():
        click.echo("Syncer stopped")
    else:
        click.echo("Syncer is not running")


@cli.command()
@config_option
@click.pass_context
def restart(ctx, config):
    """Restart the background syncer"""
    _daemon(config).stop_daemon()
    ctx.invoke(start, config=config, daemon_mode=True)


@cli.command()
@config_option
def status(config):
    """Show whether the background syncer is running"""
    click.echo(json.dumps(_daemon(config).get_status(), indent=2))


@cli.command('check-connection')
@config_option
def check_connection(config):
    """Check connectivity to both databases"""
    cfg, settings = _load(config)
    service = DatabaseSyncService(cfg, settings)
    try:
        report = service.check_connections()
    finally:
        service.close_connections()
    for role, entry in report.items():
        state = 'OK' if entry['ok'] else f"FAILED ({entry.get('error')})"
        click.echo(f"{role}: {entry['type']} {entry['database']} - {state}")
        for table, info in entry.get('tables', {}).items():
            if 'error' in info:
                click.echo(f"  {table}: {info['error']}")
                continue
            pending = ' (changes pending)' if info.get('pending') else ''
            click.echo(f"  {table}: last update {info['last_update']}, "
                       f"last sync {info.get('last_sync', 'unknown')}{pending}")
    if not all(entry['ok'] for entry in report.values()):
        raise SystemExit(1)


@cli.command()
@config_option
@click.option('--refresh', is_flag=True, help='Ignore cached schemas')
def analyze(config, refresh):
    """Analyze listen table structures"""
    cfg, settings = _load(config)
    service = DatabaseSyncService(cfg, settings)
    try:
        service.create_adapters()
        if refresh:
            for analyzer in service.analyzers.values():
                analyzer.clear_cache()
        for direction in settings.directions:
            analyzer = service.analyzers[direction.source_role]
            try:
                schema = analyzer.analyze_table(direction.listen_table)
            except Exception as e:
                click.echo(f"{direction.source_role}.{direction.listen_table}: analysis failed ({e})")
                continue
            click.echo(
                f"{direction.source_role}.{schema.table_name}: "
                f"primary_key={schema.primary_key} update_column={schema.update_column} "
                f"columns={', '.join(schema.columns)}"
            )
    finally:
        service.close_connections()


if __name__ == '__main__':
    cli()
