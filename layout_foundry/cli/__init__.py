"""
Command Line Interface for Layout Foundry.
"""

from contextlib import contextmanager
from typing import Iterator, Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db.base import get_session_local, init_database
from ..errors import LayoutFoundryError
from ..logging_config import configure_logging
from ..storage.signing import SignedAccessService
from ..versions.store import ModuleVersionStore

app = typer.Typer(help="Layout Foundry - artifact lifecycle for split designs and modules")
console = Console()

STATUS_STYLE = {
    "draft": "dim",
    "packaged": "cyan",
    "deployed": "blue",
    "active": "bold green",
    "inactive": "yellow",
    "archived": "dim",
}


@app.callback()
def main() -> None:
    configure_logging(get_settings())


@contextmanager
def session_scope() -> Iterator[Session]:
    db = get_session_local()()
    try:
        yield db
    finally:
        db.close()


def _fail(error: LayoutFoundryError) -> None:
    console.print(f"❌ {error.message}")
    raise typer.Exit(code=1)


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Run the HTTP API."""
    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    rprint(Panel.fit(f"Starting Layout Foundry on http://{host}:{port}", style="bold blue"))
    uvicorn.run("layout_foundry.main:app", host=host, port=port, reload=reload)


@app.command("init-db")
def init_db():
    """Create all database tables."""
    init_database()
    console.print("✅ Database initialized")


@app.command()
def sign(
    key: str = typer.Argument(..., help="Storage key to grant access to"),
    ttl_ms: Optional[int] = typer.Option(None, "--ttl-ms", help="Grant lifetime in milliseconds"),
    base_url: str = typer.Option("/files/download", help="Download endpoint to build the URL on"),
):
    """Issue a signed download URL for a stored blob."""
    signer = SignedAccessService.from_settings(get_settings())
    grant = signer.issue(key, ttl_ms)

    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("key", grant.key)
    table.add_row("exp", str(grant.exp))
    table.add_row("sig", grant.sig)
    table.add_row("url", grant.to_url(base_url))
    console.print(table)


@app.command()
def versions(module_id: str = typer.Argument(..., help="Module to list")):
    """List the versions of a module."""
    with session_scope() as db:
        index = ModuleVersionStore(db).get_index(module_id)

    if not index:
        console.print(f"No versions for module {module_id}")
        return

    table = Table(title=f"Versions of {module_id}", show_header=True, header_style="bold magenta")
    table.add_column("Version", style="yellow")
    table.add_column("ID")
    table.add_column("Status")
    table.add_column("Files", justify="right")
    table.add_column("Created")
    table.add_column("Summary")

    for entry in reversed(index):
        status = entry["status"]
        table.add_row(
            entry["version_number"],
            entry["version_id"],
            f"[{STATUS_STYLE.get(status, 'white')}]{status}[/]",
            str(entry["metadata"]["file_count"]),
            entry["created_at"] or "",
            entry["change_summary"],
        )
    console.print(table)


@app.command()
def archive(
    module_id: str = typer.Argument(..., help="Module to archive"),
    keep: Optional[int] = typer.Option(None, min=0, help="Number of newest versions to keep"),
):
    """Archive old versions of a module."""
    keep_count = get_settings().version_keep_count if keep is None else keep
    with session_scope() as db:
        try:
            archived = ModuleVersionStore(db).archive_old_versions(module_id, keep_count)
        except LayoutFoundryError as e:
            _fail(e)
    console.print(f"✅ Archived {archived} version(s) of {module_id}")


@app.command("purge-archived")
def purge_archived(
    module_id: str = typer.Argument(..., help="Module to purge"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Permanently delete archived versions of a module."""
    if not yes:
        typer.confirm(f"Delete archived versions of {module_id}?", abort=True)
    with session_scope() as db:
        try:
            deleted = ModuleVersionStore(db).delete_archived_versions(module_id)
        except LayoutFoundryError as e:
            _fail(e)
    console.print(f"✅ Deleted {deleted} archived version(s) of {module_id}")


@app.command()
def stats():
    """Show version store statistics."""
    with session_scope() as db:
        statistics = ModuleVersionStore(db).get_statistics()

    table = Table(title="Version Store", show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for name, value in statistics.model_dump().items():
        table.add_row(name.replace("_", " "), str(value))
    console.print(table)


if __name__ == "__main__":
    app()
