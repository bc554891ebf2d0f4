"""Command line interface for the flowboard dashboard."""

from __future__ import annotations

import asyncio
import json
from typing import Optional

import typer

from flowboard import get_repository, load_config
from flowboard.log import configure_logging

app = typer.Typer(help="CLI for the flowboard workflow dashboard")

workflow_app = typer.Typer(help="Commands for inspecting workflow instances")
db_app = typer.Typer(help="Commands for managing the state database")

app.add_typer(workflow_app, name="workflow")
app.add_typer(db_app, name="db")


@app.callback()
def main() -> None:
    """Flowboard CLI entry point."""
    pass


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind"),
    port: int = typer.Option(8787, help="Port to listen on"),
    config: Optional[str] = typer.Option(None, help="Path to a flowboard.yaml file"),
) -> None:
    """
    Run the dashboard and workflow API.

    Example:
        flowboard serve --port 8000
    """
    import uvicorn

    from flowboard.api import create_app

    settings = load_config(config)
    configure_logging(settings.log_level, settings.log_format)
    uvicorn.run(create_app(settings), host=host, port=port, log_config=None)


@workflow_app.command("list")
def workflow_list() -> None:
    """
    List all workflow instances, newest first.

    Example:
        flowboard workflow list
        # Output: 1f0c...    completed    5 steps
    """
    repo = get_repository()
    instances = asyncio.run(_run_and_close(repo, repo.list_instances()))
    if not instances:
        typer.echo("No workflows found")
        return
    for instance in instances:
        typer.echo(f"{instance.id}\t{instance.status.value}\t{len(instance.steps)} steps")


@workflow_app.command("show")
def workflow_show(instance_id: str) -> None:
    """Show one workflow instance with its steps."""
    repo = get_repository()
    instance = asyncio.run(_run_and_close(repo, repo.get_instance(instance_id)))
    if instance is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {instance.id}: {instance.status.value}")
    for step in instance.steps:
        line = f"- [{step.step_index}] {step.name}: {step.status.value}"
        if step.duration is not None:
            line += f" ({step.duration} ms)"
        typer.echo(line)
        if step.output is not None:
            typer.echo(f"    output: {json.dumps(step.output)}")
        if step.error:
            typer.echo(f"    error: {step.error}")


@workflow_app.command("delete")
def workflow_delete(instance_id: str) -> None:
    """Delete a workflow instance and its steps."""
    repo = get_repository()
    deleted = asyncio.run(_run_and_close(repo, repo.delete_instance(instance_id)))
    if not deleted:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Deleted workflow {instance_id}")


@db_app.command("init")
def db_init() -> None:
    """Create the workflow tables in the configured database."""
    repo = get_repository()
    # the first query creates the schema on every backend
    asyncio.run(_run_and_close(repo, repo.list_instances()))
    typer.echo("Database initialized")


async def _run_and_close(repo, operation):
    try:
        return await operation
    finally:
        await repo.close()


if __name__ == "__main__":
    app()
