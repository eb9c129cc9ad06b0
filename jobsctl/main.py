"""jobsctl - Main Entry Point"""

import asyncio
import json
import signal

import typer
from rich.console import Console
from rich.panel import Panel

from .client.base import JobsCtlError
from .client.endpoints import JobsClient
from .commands import config
from .utils.config_manager import config as config_manager
from .utils.formatting import (
    create_jobs_table,
    create_stats_table,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()

app = typer.Typer(
    name="jobsctl",
    help="Operator CLI for the form jobs service",
    rich_markup_mode="rich",
)
app.add_typer(config.app, name="config")


def _fail(error: JobsCtlError):
    print_error(error.message)
    raise typer.Exit(1)


@app.command()
def health():
    """Check API connectivity and job engine state"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with JobsClient(base_url) as client:
            data = client.health_check()
    except JobsCtlError as e:
        console.print(
            Panel(
                f"[red]Connection Failed[/red]\n\n"
                f"Make sure the API is running at:\n[blue]{base_url}[/blue]\n\n"
                f"Update the URL with:\n[cyan]jobsctl config set api.base_url <url>[/cyan]",
                title="Connection Error",
                border_style="red",
            )
        )
        _fail(e)

    worker = data.get("worker") or {}
    database = data.get("database") or {}
    console.print(
        Panel(
            f"• Version: [cyan]{data.get('version', 'unknown')}[/cyan]\n"
            f"• Environment: [yellow]{data.get('environment', 'unknown')}[/yellow]\n"
            f"• Database: {'[green]connected[/green]' if database.get('connected') else '[red]down[/red]'}\n"
            f"• Scheduler running: {worker.get('scheduler_running', False)}\n"
            f"• Queue depth: {worker.get('queue_depth', 0)}\n"
            f"• Stuck jobs: {worker.get('stuck_jobs_count', 0)}",
            title="System Status",
            border_style="green" if data.get("ok") else "red",
        )
    )


@app.command()
def status(
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Counts only"),
):
    """Show job statistics and recent jobs"""
    try:
        with JobsClient() as client:
            data = client.status(quiet=quiet)
    except JobsCtlError as e:
        _fail(e)

    console.print(create_stats_table(data.get("stats", {})))
    if data.get("stale_pending_count"):
        print_warning(
            f"{data['stale_pending_count']} pending job(s) waiting longer than the threshold"
        )
    if not quiet and data.get("jobs"):
        console.print(create_jobs_table(data["jobs"]))


@app.command()
def show(job_id: str = typer.Argument(..., help="Job ID")):
    """Show a single job as JSON"""
    try:
        with JobsClient() as client:
            data = client.get_job(job_id)
    except JobsCtlError as e:
        _fail(e)

    console.print_json(json.dumps(data))


@app.command()
def enqueue(
    job_type: str = typer.Argument(..., help="Job type, e.g. ai_generation"),
    payload: str = typer.Option("{}", "--payload", "-p", help="Payload as JSON"),
    max_attempts: int | None = typer.Option(None, "--max-attempts", min=1),
    delay_s: float = typer.Option(0.0, "--delay", min=0, help="Extra delay in seconds"),
):
    """Enqueue a job"""
    try:
        payload_data = json.loads(payload)
    except json.JSONDecodeError as e:
        print_error(f"Payload is not valid JSON: {e}")
        raise typer.Exit(1) from None

    try:
        with JobsClient() as client:
            data = client.enqueue(job_type, payload_data, max_attempts, delay_s)
    except JobsCtlError as e:
        _fail(e)

    print_success(f"Enqueued job {data['job_id']} (eligible at {data['scheduled_for']})")


@app.command()
def force():
    """Dispatch eligible jobs now"""
    try:
        with JobsClient() as client:
            data = client.force_process()
    except JobsCtlError as e:
        _fail(e)

    print_success(f"Dispatched {data.get('processed_count', 0)} job(s)")


@app.command()
def retry(job_id: str = typer.Argument(..., help="Job ID")):
    """Requeue a failed or retry job"""
    try:
        with JobsClient() as client:
            data = client.retry(job_id)
    except JobsCtlError as e:
        _fail(e)

    if data.get("changed", True):
        print_success(f"Job {job_id} requeued")
    else:
        print_info(f"Job {job_id} is already pending")


@app.command()
def cancel(job_id: str = typer.Argument(..., help="Job ID")):
    """Cancel a pending job"""
    try:
        with JobsClient() as client:
            client.cancel(job_id)
    except JobsCtlError as e:
        _fail(e)

    print_success(f"Job {job_id} cancelled")


@app.command("cleanup-stuck")
def cleanup_stuck():
    """Recover jobs stuck in processing"""
    try:
        with JobsClient() as client:
            data = client.cleanup_stuck()
    except JobsCtlError as e:
        _fail(e)

    print_success(
        f"Reset {data.get('reset_count', 0)} job(s), failed {data.get('failed_count', 0)}"
    )


@app.command()
def cleanup(
    retention_hours: float | None = typer.Option(
        None, "--retention-hours", min=0.001, help="Defaults to the server setting"
    ),
):
    """Delete finished jobs older than the retention window"""
    try:
        with JobsClient() as client:
            data = client.cleanup(retention_hours)
    except JobsCtlError as e:
        _fail(e)

    print_success(f"Deleted {data.get('deleted_count', 0)} job(s)")


@app.command()
def worker(
    once: bool = typer.Option(
        False, "--once", help="Run one reaper scan and one dispatch cycle, then exit"
    ),
):
    """Run the scheduler and reaper as a standalone process"""
    from formjobs.config.logging import setup_logging
    from formjobs.config.settings import Settings

    settings = Settings()
    setup_logging(settings)

    dispatched = asyncio.run(_run_worker(settings, once))
    if once:
        print_success(f"Dispatched {dispatched} job(s)")


async def _run_worker(settings, once: bool) -> int:
    from formjobs.infra.database import Database
    from formjobs.v1.infra.jobs.engine import build_engine

    database = Database(settings)
    if settings.database_url.startswith("sqlite"):
        await database.create_all()
    engine = build_engine(settings, database)

    try:
        if once:
            await engine.reaper.scan()
            dispatched = await engine.scheduler.tick()
            await engine.scheduler.drain()
            return dispatched

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        engine.start()
        await stop_event.wait()
        return 0
    finally:
        await engine.stop()
        await database.close()


@app.command()
def version():
    """Show CLI version information"""
    from . import __version__

    console.print(f"jobsctl v{__version__}")


if __name__ == "__main__":
    app()
