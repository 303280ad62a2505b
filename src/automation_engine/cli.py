"""
Messaging Automation Engine CLI
"""
import asyncio
import json
import logging
import signal
from datetime import timedelta
from pathlib import Path

import click

from .config import EngineSettings, setup_logging
from .core.engine import WorkflowEngine
from .core.parser import WorkflowParser
from .exceptions import InvalidWorkflowError, UnknownWorkflowError
from .models.execution import utc_now


logger = logging.getLogger(__name__)


@click.group()
@click.option('--log-level', default=None, help='Override LOG_LEVEL')
@click.pass_context
def cli(ctx, log_level):
    """Messaging Automation Engine CLI"""
    settings = EngineSettings.from_env()
    if log_level:
        settings.log_level = log_level.upper()
    setup_logging(settings.log_level)
    ctx.obj = settings


@cli.command()
@click.option('--host', default=None, help='Host to bind to')
@click.option('--port', default=None, type=int, help='Port to bind to')
@click.pass_obj
def serve(settings, host, port):
    """Start the API server with the scheduler"""
    import uvicorn
    from .api.app import create_app

    host = host or settings.api_host
    port = port or settings.api_port
    click.echo(f"Starting API server on {host}:{port}")
    uvicorn.run(create_app(settings=settings), host=host, port=port, log_level=settings.log_level.lower())


@cli.command()
@click.pass_obj
def worker(settings):
    """Resume due runs until interrupted"""
    async def _worker():
        engine = await WorkflowEngine.from_settings(settings)
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        await engine.start()
        click.echo(f"Worker {engine.scheduler.owner_id} polling every {settings.scheduler_poll_interval}s")
        try:
            await stop.wait()
        finally:
            await engine.close()

    asyncio.run(_worker())


@cli.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate(files):
    """Validate workflow definition files"""
    parser = WorkflowParser()
    failed = 0
    for file_path in files:
        try:
            workflow = parser.parse_file(file_path)
        except InvalidWorkflowError as e:
            failed += 1
            click.echo(f"{file_path}: INVALID ({e.reason.value})", err=True)
            for problem in e.problems:
                click.echo(f"  - {problem}", err=True)
            continue
        click.echo(f"{file_path}: OK ({workflow.id} v{workflow.version}, {len(workflow.nodes)} nodes)")

    if failed:
        raise SystemExit(1)


@cli.command()
@click.argument('workflow_id')
@click.option('--payload', default='{}', help='Triggering payload as JSON')
@click.pass_obj
def trigger(settings, workflow_id, payload):
    """Trigger a workflow once and print the resulting run"""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint='--payload')

    async def _trigger():
        engine = await WorkflowEngine.from_settings(settings)
        try:
            result = await engine.trigger(workflow_id, data)
        finally:
            await engine.close()
        return result

    try:
        result = asyncio.run(_trigger())
    except UnknownWorkflowError as e:
        raise click.ClickException(str(e))

    click.echo(json.dumps(result.run.to_dict(), indent=2, ensure_ascii=False))
    for sibling in result.siblings:
        click.echo(f"Forked run: {sibling.run_id} ({sibling.status.value})")


@cli.command()
@click.option('--days', default=30, type=click.IntRange(min=0), help='Delete finished runs older than this')
@click.pass_obj
def purge(settings, days):
    """Delete finished runs past the retention period"""
    async def _purge():
        engine = await WorkflowEngine.from_settings(settings)
        try:
            return await engine.purge_finished(utc_now() - timedelta(days=days))
        finally:
            await engine.close()

    count = asyncio.run(_purge())
    click.echo(f"Purged {count} finished run(s)")


def main():
    """Main entry point"""
    cli()


if __name__ == '__main__':
    main()
