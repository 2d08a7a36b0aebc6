"""BidIntake CLI - operator commands for the ingestion pipeline.

Commands:
- init: Initialize database schema
- create-project: Create a bid project
- register-document: Upload a file to storage and queue it
- process-document: Process one queued document
- extract-metadata: Pre-fill project fields from a bid document
- process-queue: Drain a batch of queued documents
- categorize: Categorize a project's line items
- generate-packages: Build work packages for a project
- load-catalog: Load reference catalog items (CSV/XLSX)
- stats: Show project statistics
"""

from __future__ import annotations

import asyncio
import mimetypes
from pathlib import Path
from typing import Optional
from uuid import UUID, uuid4

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy import func, select

from bidintake.categorization.categorizer import CatalogCategorizer
from bidintake.config import get_config
from bidintake.core.logging import configure_logging
from bidintake.db.connection import close_db, get_session, init_db
from bidintake.db.models import (
    DocumentModel,
    LineItemModel,
    ProjectModel,
    WorkPackageModel,
)
from bidintake.exceptions import BidIntakeError, PackagesExistError
from bidintake.ingestion.catalog import load_catalog
from bidintake.intelligence.extraction import AIExtractionAdapter, OpenAIExtractionClient
from bidintake.models import DocumentType
from bidintake.packaging.grouper import WorkPackageGrouper
from bidintake.pipeline.dispatcher import FormatDispatcher
from bidintake.pipeline.queue import DocumentQueue
from bidintake.storage import LocalObjectStorage

app = typer.Typer(
    name="bidintake",
    help="BidIntake - bid document ingestion and line item normalization",
    no_args_is_help=True,
)

console = Console()


@app.callback()
def main():
    """Configure logging before any command runs."""
    configure_logging()


def _adapter() -> Optional[AIExtractionAdapter]:
    """AI adapter when an API key is configured, else None."""
    config = get_config()
    if not config.llm.api_key:
        return None
    return AIExtractionAdapter(OpenAIExtractionClient(config), config)


def _run(coro):
    async def _wrapped():
        try:
            return await coro
        finally:
            await close_db()

    return asyncio.run(_wrapped())


@app.command()
def init(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables"),
):
    """Initialize database schema."""
    config = get_config()
    console.print(f"[bold]Initializing database:[/bold] {config.db.url}")
    if drop:
        console.print("[yellow]Dropping existing tables...[/yellow]")
    _run(init_db(drop=drop))
    console.print("[bold green]✓[/bold green] Database initialized")


@app.command(name="create-project")
def create_project_cmd(
    name: str = typer.Argument(..., help="Project name"),
    contract: Optional[str] = typer.Option(None, "--contract", help="Contract number"),
    county: Optional[str] = typer.Option(None, "--county", help="County"),
):
    """Create a bid project."""

    async def _create():
        async with get_session() as session:
            project = ProjectModel(name=name, contract_number=contract, county=county)
            session.add(project)
            await session.flush()
            return project.id

    project_id = _run(_create())
    console.print(f"[bold green]✓[/bold green] Created project {project_id}")


@app.command(name="register-document")
def register_document_cmd(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Document file"),
    project_id: UUID = typer.Option(..., "--project", help="Project ID"),
    document_type: DocumentType = typer.Option(..., "--type", help="Declared document type"),
    mime_type: Optional[str] = typer.Option(None, "--mime", help="MIME type (guessed from name)"),
):
    """Upload a file to object storage and queue it for processing."""
    mime = mime_type or mimetypes.guess_type(file.name)[0] or "application/octet-stream"

    async def _register():
        storage = LocalObjectStorage()
        data = file.read_bytes()
        path = await storage.upload(f"{project_id}/{uuid4()}/{file.name}", data, mime)

        async with get_session() as session:
            if await session.get(ProjectModel, project_id) is None:
                raise typer.BadParameter(f"Project {project_id} not found")
            document = DocumentModel(
                project_id=project_id,
                document_type=document_type.value,
                file_name=file.name,
                file_path=path,
                mime_type=mime,
                file_size_bytes=len(data),
            )
            session.add(document)
            await session.flush()
            return document.id

    document_id = _run(_register())
    console.print(f"[bold green]✓[/bold green] Registered document {document_id} ({mime})")


@app.command(name="process-document")
def process_document_cmd(
    document_id: UUID = typer.Argument(..., help="Document ID"),
    replace: bool = typer.Option(False, "--replace", help="Replace line items from this document"),
):
    """Process one document."""

    async def _process():
        async with get_session() as session:
            dispatcher = FormatDispatcher(session, LocalObjectStorage(), _adapter())
            return await dispatcher.process(document_id, replace_existing=replace)

    try:
        result = _run(_process())
    except (BidIntakeError, LookupError) as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(code=1)

    if result.success:
        console.print(f"[bold green]✓[/bold green] Completed via {result.handler} handler")
        if result.line_items_found:
            console.print(
                f"  Line items: {result.line_items_imported} imported, "
                f"{result.line_items_skipped} skipped, {result.line_items_failed} failed"
            )
    else:
        console.print(f"[bold red]✗[/bold red] Failed: {result.error}")
        raise typer.Exit(code=1)


@app.command(name="extract-metadata")
def extract_metadata_cmd(
    document_id: UUID = typer.Argument(..., help="Document ID"),
):
    """Extract bid metadata from a document and pre-fill blank project fields."""

    async def _extract():
        async with get_session() as session:
            dispatcher = FormatDispatcher(session, LocalObjectStorage(), _adapter())
            return await dispatcher.prefill_project(document_id)

    try:
        metadata = _run(_extract())
    except (BidIntakeError, LookupError) as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(code=1)

    table = Table(title=f"Bid Metadata (confidence {metadata.confidence_score:.0f})")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for name, value in metadata.model_dump(exclude={"extraction_notes", "confidence_score"}).items():
        if value is not None:
            table.add_row(name, str(value))
    console.print(table)
    for note in metadata.extraction_notes:
        console.print(f"[yellow]⚠[/yellow] {note}")


@app.command(name="process-queue")
def process_queue_cmd(
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="Documents per batch"),
    retry_failed: bool = typer.Option(False, "--retry-failed", help="Re-queue failed documents first"),
    reset_stuck: bool = typer.Option(False, "--reset-stuck", help="Re-queue stuck documents first"),
):
    """Process a batch of pending documents."""

    async def _process():
        async with get_session() as session:
            queue = DocumentQueue(session, LocalObjectStorage(), _adapter())
            if reset_stuck:
                count = await queue.reset_stuck()
                console.print(f"  Reset {count} stuck documents")
            if retry_failed:
                count = await queue.retry_failed()
                console.print(f"  Re-queued {count} failed documents")
            return await queue.process_batch(batch_size)

    summary = _run(_process())

    table = Table(title="Queue Batch")
    table.add_column("Document", style="cyan")
    table.add_column("Handler")
    table.add_column("Status")
    table.add_column("Detail")
    for result in summary["results"]:
        status = "[green]COMPLETED[/green]" if result.success else "[red]FAILED[/red]"
        detail = result.error or (
            f"{result.line_items_imported} line items" if result.line_items_found else ""
        )
        table.add_row(result.document_id, result.handler, status, detail)
    if summary["results"]:
        console.print(table)

    console.print(
        f"\n[bold]Processed:[/bold] {summary['processed']}  "
        f"[green]Succeeded:[/green] {summary['succeeded']}  "
        f"[red]Failed:[/red] {summary['failed']}  "
        f"Remaining: {summary['remaining']}"
    )


@app.command()
def categorize(
    project_id: UUID = typer.Argument(..., help="Project ID"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="Items per batch"),
    force: bool = typer.Option(False, "--force", help="Re-categorize all items"),
    sweep: bool = typer.Option(False, "--all", help="Walk every batch, not just the next one"),
):
    """Categorize a project's line items against the catalog."""

    async def _categorize():
        async with get_session() as session:
            categorizer = CatalogCategorizer(session, _adapter())
            results = [await categorizer.categorize(project_id, batch_size=batch_size, force=force)]
            while sweep and results[-1].last_line_number is not None:
                results.append(
                    await categorizer.categorize(
                        project_id,
                        batch_size=batch_size,
                        force=force,
                        after_line=results[-1].last_line_number,
                    )
                )
            return results

    try:
        results = _run(_categorize())
    except LookupError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(code=1)

    batches = [r for r in results if r.last_line_number is not None] or results
    for batch in batches:
        console.print(f"[bold green]✓[/bold green] {batch.message}")
        if batch.ai_error:
            console.print(f"[yellow]⚠[/yellow] AI categorization unavailable: {batch.ai_error}")
    result = results[-1]
    if result.by_category:
        table = Table(title="Line Items by Category")
        table.add_column("Category", style="cyan")
        table.add_column("Items", justify="right")
        for category, count in sorted(result.by_category.items()):
            table.add_row(category, str(count))
        console.print(table)


@app.command(name="generate-packages")
def generate_packages_cmd(
    project_id: UUID = typer.Argument(..., help="Project ID"),
    regenerate: bool = typer.Option(False, "--regenerate", help="Replace existing packages"),
    no_ai: bool = typer.Option(False, "--no-ai", help="Category-based grouping only"),
):
    """Generate work packages for a project."""

    async def _generate():
        async with get_session() as session:
            grouper = WorkPackageGrouper(session, _adapter())
            return await grouper.generate(project_id, regenerate=regenerate, use_ai=not no_ai)

    try:
        result = _run(_generate())
    except PackagesExistError as e:
        console.print(f"[yellow]⚠[/yellow] {e}")
        raise typer.Exit(code=1)
    except LookupError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(code=1)

    table = Table(title=f"Work Packages ({result.method})")
    table.add_column("#", justify="right")
    table.add_column("Code", style="cyan")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Items", justify="right")
    for package in result.packages:
        table.add_row(
            str(package["package_number"]),
            package["package_code"] or "",
            package["package_name"],
            package["work_category"],
            str(package["total_items"]),
        )
    console.print(table)
    console.print(f"[bold green]✓[/bold green] {result.message}")


@app.command(name="load-catalog")
def load_catalog_cmd(
    file: Path = typer.Argument(..., help="Catalog file (CSV/XLSX)"),
):
    """Load reference catalog items."""

    async def _load():
        async with get_session() as session:
            return await load_catalog(session, file)

    try:
        result = _run(_load())
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(code=1)

    console.print(
        f"[bold green]✓[/bold green] {result.inserted} inserted, "
        f"{result.updated} updated, {result.skipped} skipped"
    )
    for err in result.errors[:5]:
        console.print(f"  {err}", style="dim")


@app.command()
def stats(
    project_id: UUID = typer.Argument(..., help="Project ID"),
):
    """Show project statistics."""

    async def _stats():
        async with get_session() as session:
            project = await session.get(ProjectModel, project_id)
            if project is None:
                return None

            documents = (
                await session.execute(
                    select(DocumentModel.processing_status, func.count(DocumentModel.id))
                    .where(DocumentModel.project_id == project_id)
                    .group_by(DocumentModel.processing_status)
                )
            ).all()
            total_items = (
                await session.execute(
                    select(func.count(LineItemModel.id)).where(LineItemModel.project_id == project_id)
                )
            ).scalar_one()
            uncategorized = (
                await session.execute(
                    select(func.count(LineItemModel.id)).where(
                        LineItemModel.project_id == project_id,
                        LineItemModel.work_category.is_(None),
                    )
                )
            ).scalar_one()
            packages = (
                await session.execute(
                    select(func.count(WorkPackageModel.id)).where(
                        WorkPackageModel.project_id == project_id
                    )
                )
            ).scalar_one()
            return project, dict(documents), total_items, uncategorized, packages

    result = _run(_stats())
    if result is None:
        console.print(f"[bold red]✗[/bold red] Project {project_id} not found")
        raise typer.Exit(code=1)

    project, documents, total_items, uncategorized, packages = result

    table = Table(title=f"Project: {project.name}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Status", project.status)
    table.add_row("Contract", project.contract_number or "-")
    table.add_row("County", project.county or "-")
    table.add_row("Letting date", project.letting_date.isoformat() if project.letting_date else "-")
    for status, count in sorted(documents.items()):
        table.add_row(f"Documents {status}", str(count))
    table.add_row("Line items", str(total_items))
    table.add_row("Uncategorized", str(uncategorized))
    table.add_row("Work packages", str(packages))
    console.print(table)


if __name__ == "__main__":
    app()
