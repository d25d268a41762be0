"""
Command-line interface for model acquisition.

Wraps :class:`ModelAcquirer` with typer commands and rich output::

    edgefetch fetch bartowski/SmolLM2-135M-Instruct-GGUF --variant Q4_K_M
    edgefetch bundle wan/Wan2.1-T2V-1.3B
    edgefetch inspect https://huggingface.co/city96/umt5-xxl-encoder-gguf
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from edgefetch.logging_utils import configure_logging

from .config import AcquisitionConfig, get_config
from .endpoints import HubEndpoints
from .errors import AcquisitionError, DownloadCancelled
from .orchestrator import DownloadResult, ModelAcquirer
from .search import ModelSearch
from .selection import detect_variant


app = typer.Typer(
    name="edgefetch",
    help="Fetch model files from the hub into a verified local cache",
    no_args_is_help=True,
)
console = Console()
LOG_PATH = configure_logging("edgefetch")

_FAILURES = (AcquisitionError, DownloadCancelled, OSError, ValueError)


def _split_csv(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()] or None


def _config(cache_root: Optional[Path]) -> AcquisitionConfig:
    config = get_config()
    if cache_root is not None:
        config = config.with_overrides({"cache_root": cache_root})
    return config


@contextmanager
def _progress_bar() -> Iterator[Callable[[str, int, Optional[int]], None]]:
    """Yield ``update(label, done, total)`` backed by one rich task per label."""
    tasks = {}
    with Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
        console=console,
        transient=True,
    ) as progress:

        def update(label: str, done: int, total: Optional[int]) -> None:
            if label not in tasks:
                tasks[label] = progress.add_task(label, total=total)
            progress.update(tasks[label], completed=done, total=total)

        yield update


def _print_result(result: DownloadResult, label: Optional[str] = None) -> None:
    prefix = f"{label}: " if label else ""
    source = "cached" if result.from_cache else "downloaded"
    name = result.file_metadata.relative_path
    rprint(f"✅ [green]{prefix}{name}[/green] ({source})")
    rprint(f"   📁 {result.local_file}")
    rprint(f"   💾 Size: {_format_size(result.file_metadata.size_bytes)}")
    if result.alias_applied:
        ref = result.reference
        rprint(f"   🔀 Alias: {ref.requested_id} -> {ref.resolved_id}")
    if result.file_metadata.hash_verified:
        rprint(f"   🔒 Verified {result.file_metadata.content_hash}")


@app.command("fetch")
def fetch(
    model: str = typer.Argument(..., help="Model id (owner/repo), alias or hub URL"),
    revision: str = typer.Option("main", "--revision", "-r", help="Branch or commit"),
    filename: Optional[str] = typer.Option(
        None, "--file", "-f", help="Exact file name (or path suffix) to fetch"
    ),
    variants: Optional[str] = typer.Option(
        None,
        "--variant",
        "-v",
        help="Comma-separated quantization preference, e.g. Q4_K_M,Q4_0",
    ),
    force: bool = typer.Option(False, "--force", help="Re-download even if cached"),
    system: Optional[bool] = typer.Option(
        None, "--system/--no-system", help="Try aria2c before in-process streaming"
    ),
    cache_root: Optional[Path] = typer.Option(None, "--cache-root", help="Cache root"),
):
    """Fetch one quantized (.gguf) weight file of a model."""

    try:
        acquirer = ModelAcquirer(_config(cache_root))
        with _progress_bar() as update:
            result = acquirer.acquire(
                model,
                revision,
                filename=filename,
                variant_priority=_split_csv(variants),
                force_refresh=force,
                prefer_system_backend=system,
                progress=lambda done, total: update(model, done, total),
            )
        _print_result(result)
    except _FAILURES as exc:
        rprint(f"❌ [red]Fetch failed:[/red] {exc}")
        raise typer.Exit(code=1)


@app.command("fetch-file")
def fetch_file(
    model: str = typer.Argument(..., help="Model id (owner/repo), alias or hub URL"),
    revision: str = typer.Option("main", "--revision", "-r", help="Branch or commit"),
    filename: Optional[str] = typer.Option(
        None, "--file", "-f", help="Exact file name (or path suffix) to fetch"
    ),
    extensions: Optional[str] = typer.Option(
        None,
        "--ext",
        help="Comma-separated extensions considered when no file is named",
    ),
    force: bool = typer.Option(False, "--force", help="Re-download even if cached"),
    system: Optional[bool] = typer.Option(
        None, "--system/--no-system", help="Try aria2c before in-process streaming"
    ),
    cache_root: Optional[Path] = typer.Option(None, "--cache-root", help="Cache root"),
):
    """Fetch a single repository file (largest matching file by default)."""

    try:
        acquirer = ModelAcquirer(_config(cache_root))
        with _progress_bar() as update:
            result = acquirer.acquire_repo_file(
                model,
                revision,
                filename=filename,
                extensions=_split_csv(extensions),
                force_refresh=force,
                prefer_system_backend=system,
                progress=lambda done, total: update(model, done, total),
            )
        _print_result(result)
    except _FAILURES as exc:
        rprint(f"❌ [red]Fetch failed:[/red] {exc}")
        raise typer.Exit(code=1)


@app.command("bundle")
def fetch_bundle(
    identifier: str = typer.Argument(..., help="Registered bundle id, e.g. wan/Wan2.1"),
    force: bool = typer.Option(False, "--force", help="Re-download even if cached"),
    system: Optional[bool] = typer.Option(
        None, "--system/--no-system", help="Try aria2c before in-process streaming"
    ),
    cache_root: Optional[Path] = typer.Option(None, "--cache-root", help="Cache root"),
):
    """Fetch a composite model: primary weights plus VAE / text encoder."""

    try:
        acquirer = ModelAcquirer(_config(cache_root))
        with _progress_bar() as update:
            result = acquirer.acquire_bundle(
                identifier,
                force_refresh=force,
                prefer_system_backend=system,
                progress=update,
            )
        rprint(f"📦 [bold]{result.descriptor.identifier}[/bold]")
        _print_result(result.primary, "primary")
        for role, role_result in result.auxiliary.items():
            _print_result(role_result, role)
    except _FAILURES as exc:
        rprint(f"❌ [red]Bundle failed:[/red] {exc}")
        raise typer.Exit(code=1)


@app.command("inspect")
def inspect_model(
    model: str = typer.Argument(..., help="Model id (owner/repo), alias or hub URL"),
    revision: str = typer.Option("main", "--revision", "-r", help="Branch or commit"),
):
    """List the files a model revision publishes, without downloading."""

    try:
        acquirer = ModelAcquirer(get_config())
        reference, entries = acquirer.inspect(model, revision)
    except _FAILURES as exc:
        rprint(f"❌ [red]Inspect failed:[/red] {exc}")
        raise typer.Exit(code=1)

    table = Table(title=f"{reference.resolved_id}@{reference.resolved_revision}")
    table.add_column("File", style="cyan")
    table.add_column("Variant", style="magenta")
    table.add_column("Size", justify="right")
    table.add_column("SHA256", style="dim")
    for entry in entries:
        if not entry.is_file:
            continue
        table.add_row(
            entry.relative_path,
            detect_variant(entry.relative_path) or "-",
            _format_size(entry.size_bytes) if entry.size_bytes is not None else "?",
            entry.content_hash.hex_digest[:12] if entry.content_hash else "-",
        )
    console.print(table)


@app.command("search")
def search_models(
    query: str = typer.Argument(..., help="Search text"),
    author: Optional[str] = typer.Option(None, "--author", help="Only this owner"),
    task_filter: Optional[str] = typer.Option(
        "text-generation", "--filter", help="Hub filter tag (empty for none)"
    ),
    limit: int = typer.Option(10, "--limit", "-n", help="Results per page"),
    pages: int = typer.Option(1, "--pages", help="Number of pages to follow"),
):
    """Search the hub for models."""

    config = get_config()
    searcher = ModelSearch(
        endpoints=HubEndpoints(config.hub_url), timeout=config.timeout
    )
    try:
        results = searcher.search(
            query, author=author, filter=task_filter or None, limit=limit
        )
        for _ in range(pages - 1):
            if not searcher.has_next_page:
                break
            results.extend(searcher.next_page())
    except _FAILURES as exc:
        rprint(f"❌ [red]Search failed:[/red] {exc}")
        raise typer.Exit(code=1)

    if not results:
        rprint("No models found.")
        return

    table = Table(title=f"Models matching '{query}'")
    table.add_column("Model", style="cyan")
    table.add_column("Downloads", justify="right")
    table.add_column("Likes", justify="right")
    for summary in results:
        table.add_row(summary.model_id, str(summary.downloads), str(summary.likes))
    console.print(table)


@app.command("list")
def list_cached(
    cache_root: Optional[Path] = typer.Option(None, "--cache-root", help="Cache root"),
):
    """List cached model directories."""

    acquirer = ModelAcquirer(_config(cache_root))
    directories = acquirer.list_cached_models()
    if not directories:
        rprint(f"No cached models under {acquirer.layout.cache_root}")
        return

    table = Table(title=str(acquirer.layout.cache_root))
    table.add_column("Model", style="cyan")
    table.add_column("Revisions")
    table.add_column("Size", justify="right")
    for directory in directories:
        revisions = sorted(p.name for p in directory.iterdir() if p.is_dir())
        size = sum(f.stat().st_size for f in directory.rglob("*") if f.is_file())
        table.add_row(directory.name, ", ".join(revisions) or "-", _format_size(size))
    console.print(table)


@app.command("clear")
def clear_cache(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    cache_root: Optional[Path] = typer.Option(None, "--cache-root", help="Cache root"),
):
    """Delete the whole model cache."""

    acquirer = ModelAcquirer(_config(cache_root))
    root = acquirer.layout.cache_root
    if not yes and not typer.confirm(f"Delete everything under {root}?"):
        raise typer.Exit(code=1)
    try:
        acquirer.clear_cache()
    except OSError as exc:
        rprint(f"❌ [red]Clear failed:[/red] {exc}")
        raise typer.Exit(code=1)
    rprint(f"🗑️  Cleared {root}")


def _format_size(size_bytes: float) -> str:
    """Format size in human-readable format."""
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_bytes < 1024.0:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"


if __name__ == "__main__":
    app()
