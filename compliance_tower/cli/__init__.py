"""
Command Line Interface for Compliance Tower.
"""

import asyncio
from contextlib import contextmanager
from typing import Iterator, List, Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db.base import get_session_local, init_database
from ..db.models import RepositoryModel
from ..db.services import RepositoryService, ScanRunService
from ..errors import ComplianceError, NotFoundError
from ..evidence.jws import JwsVerifier
from ..evidence.service import EvidenceService
from ..logging_setup import configure_logging
from ..parsing.frontmatter_parser import FrontmatterParser
from ..risk.engine import RiskEngine
from ..schemas.enums import PHASE_PROGRESS, RiskBand, ScanPhase
from ..scanner.orchestrator import ScanOrchestrator, run_status
from ..sources.github import GitHubSourceClient
from ..traceability.graph import TraceabilityGraphBuilder

app = typer.Typer(help="Compliance Tower - compliance artifact scanning and risk scoring")
console = Console()

BAND_STYLES = {
    RiskBand.LOW: "green",
    RiskBand.MEDIUM: "yellow",
    RiskBand.HIGH: "dark_orange",
    RiskBand.CRITICAL: "bold red",
}

STATUS_EMOJI = {
    "pending": "🟡",
    "in_progress": "🔵",
    "completed": "✅",
    "failed": "❌",
}


@contextmanager
def _session() -> Iterator[Session]:
    db = get_session_local()()
    try:
        yield db
    finally:
        db.close()


def _resolve_repository(db: Session, reference: str) -> RepositoryModel:
    """Find a repository by id or ``owner/name``."""
    service = RepositoryService(db)
    if "/" in reference:
        owner, _, name = reference.partition("/")
        repo = service.get_by_slug(owner, name)
        if repo is None:
            raise NotFoundError("Repository", reference)
        return repo
    return service.require(reference)


def _fail(error: ComplianceError) -> None:
    console.print(f"❌ {error.message} [dim]({error.code})[/dim]")
    raise typer.Exit(code=1)


@app.callback()
def main_callback() -> None:
    configure_logging()


@app.command()
def init_db():
    """Create the database tables."""
    init_database()
    console.print("✅ Database initialized")


@app.command()
def add_repo(
    owner: str = typer.Argument(..., help="Repository owner on the source host"),
    name: str = typer.Argument(..., help="Repository name on the source host"),
    branch: str = typer.Option("main", help="Branch to scan"),
):
    """Register a repository for scanning."""
    with _session() as db:
        try:
            repo = RepositoryService(db).create(owner, name, branch)
        except ComplianceError as e:
            _fail(e)
        console.print(f"✅ Registered {repo.slug}")
        console.print(f"Repository id: {repo.id}")


@app.command()
def scan(
    repository: str = typer.Argument(..., help="Repository id or owner/name"),
):
    """Scan a repository and print the run summary."""

    def report(percent: int, phase: ScanPhase) -> None:
        console.print(f"[dim]{percent:>3}%[/dim] {phase.value}")

    async def run() -> None:
        with _session() as db:
            repo = _resolve_repository(db, repository)
            async with GitHubSourceClient() as source:
                orchestrator = ScanOrchestrator(
                    db, source, FrontmatterParser(), JwsVerifier()
                )
                result = await orchestrator.scan_repository(repo.id, on_progress=report)

        table = Table(title=f"Scan {result.id}", show_header=True, header_style="bold magenta")
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        table.add_row("Status", f"{STATUS_EMOJI[result.status.value]} {result.status.value}")
        table.add_row("Revision", result.source_revision or "-")
        table.add_row("Found", str(result.artifacts_found))
        table.add_row("Created", str(result.artifacts_created))
        table.add_row("Updated", str(result.artifacts_updated))
        table.add_row("Deleted", str(result.artifacts_deleted))
        table.add_row("Rejected", str(result.artifacts_rejected))
        table.add_row("Broken links", str(result.meta.get("broken_links", 0)))
        table.add_row("Duration", f"{result.duration_ms} ms")
        console.print(table)

    rprint(Panel.fit(f"🔎 Scanning {repository}", style="bold blue"))
    try:
        asyncio.run(run())
    except ComplianceError as e:
        _fail(e)


@app.command()
def status(
    repository: str = typer.Argument(..., help="Repository id or owner/name"),
    limit: int = typer.Option(10, help="Number of runs to show"),
):
    """Show recent scan runs of a repository."""
    with _session() as db:
        try:
            repo = _resolve_repository(db, repository)
        except ComplianceError as e:
            _fail(e)

        runs = [
            run_status(run)
            for run in ScanRunService(db).list_for_repository(repo.id, limit=limit)
        ]

    if not runs:
        console.print(f"No scans recorded for {repo.slug}")
        return

    table = Table(title=f"Scans of {repo.slug}", show_header=True, header_style="bold magenta")
    table.add_column("Run", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Phase")
    table.add_column("Progress", justify="right")
    table.add_column("Artifacts", justify="right")
    table.add_column("Error")

    for run in runs:
        progress = PHASE_PROGRESS.get(ScanPhase(run.phase), 0) if run.phase else 0
        table.add_row(
            run.id,
            f"{STATUS_EMOJI.get(run.status.value, '❓')} {run.status.value}",
            run.phase or "-",
            f"{progress}%",
            str(run.artifacts_found),
            run.error_message or "",
        )

    console.print(table)


@app.command()
def risk(
    repository: str = typer.Argument(..., help="Repository id or owner/name"),
):
    """Show the risk assessment of a repository."""
    with _session() as db:
        try:
            repo = _resolve_repository(db, repository)
        except ComplianceError as e:
            _fail(e)
        assessment = RiskEngine(db).compute_risk(repo.id)

    style = BAND_STYLES[assessment.band]
    rprint(Panel.fit(f"{repo.slug}: {assessment.risk_level}", style=style))

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Factor", style="yellow")
    table.add_column("Score", justify="right")
    table.add_column("Weight", justify="right")
    table.add_column("Detail")
    for factor in assessment.factors:
        table.add_row(
            factor.category, str(factor.score), f"{factor.weight:.2f}", factor.description
        )
    console.print(table)

    console.print("Recommendations:")
    for recommendation in assessment.recommendations:
        console.print(f"  • {recommendation}")


@app.command()
def broken_links(
    repository: str = typer.Argument(..., help="Repository id or owner/name"),
):
    """List traceability links whose parent does not exist."""
    with _session() as db:
        try:
            repo = _resolve_repository(db, repository)
        except ComplianceError as e:
            _fail(e)
        links = TraceabilityGraphBuilder(db).list_broken_links(repo.id)

    if not links:
        console.print(f"✅ No broken links in {repo.slug}")
        return

    table = Table(title=f"Broken links in {repo.slug}", show_header=True, header_style="bold red")
    table.add_column("Type", style="cyan")
    table.add_column("Source")
    table.add_column("Target")
    table.add_column("Reason")
    for link in links:
        table.add_row(link.link_type, link.source_id, link.target_id, link.reason)
    console.print(table)


@app.command()
def verify(
    repository: str = typer.Argument(..., help="Repository id or owner/name"),
    evidence_ids: Optional[List[str]] = typer.Argument(
        None, help="Evidence file names; all evidence when omitted"
    ),
):
    """Verify evidence signatures and store the outcomes."""

    async def run() -> None:
        with _session() as db:
            repo = _resolve_repository(db, repository)
            service = EvidenceService(db, JwsVerifier())
            ids = evidence_ids or [e.natural_id for e in service.list_evidence(repo.id)]
            if not ids:
                console.print(f"No evidence stored for {repo.slug}")
                return
            batch = await service.verify_batch(repo.id, ids)

        table = Table(title="Evidence verification", show_header=True, header_style="bold magenta")
        table.add_column("Evidence", style="cyan")
        table.add_column("Valid")
        table.add_column("Error")
        for outcome in batch.results:
            table.add_row(
                outcome.evidence_id, "✅" if outcome.is_valid else "❌", outcome.error or ""
            )
        console.print(table)
        console.print(
            f"{batch.success_count}/{batch.total_processed} verified, "
            f"{batch.failure_count} failed"
        )

    try:
        asyncio.run(run())
    except ComplianceError as e:
        _fail(e)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Run the HTTP API."""
    settings = get_settings()
    uvicorn.run(
        "compliance_tower.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
    )


@app.command()
def version():
    """Show version information."""
    from .. import __version__

    rprint(Panel.fit(f"Compliance Tower v{__version__}", style="bold green"))


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
