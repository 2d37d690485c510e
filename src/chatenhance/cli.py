"""Chat content enhancer CLI."""

from pathlib import Path
from typing import Optional

import typer
from bs4 import BeautifulSoup
from rich.console import Console
from rich.table import Table

from chatenhance.config import Settings, settings
from chatenhance.logging_utils import setup_logging
from chatenhance.pipeline import ContentExtractor, RenderStateRegistry
from chatenhance.tree import compile_selector, select_with_self

app = typer.Typer(
    name="chatenhance",
    help="Extract and inspect enhanced chat content from saved HTML",
    add_completion=False,
)
console = Console()


def _load(path: Path) -> BeautifulSoup:
    if not path.exists():
        console.print(f"[red]File not found:[/red] {path}")
        raise typer.Exit(code=1)
    return BeautifulSoup(path.read_text(encoding="utf-8"), "html.parser")


def _regions(soup: BeautifulSoup, config: Settings) -> list:
    return select_with_self(soup, compile_selector(config.content_selector))


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also write logs to this file"),
) -> None:
    setup_logging("DEBUG" if verbose else settings.log_level, log_file=log_file)


@app.command()
def extract(
    html_path: Path = typer.Argument(..., help="Path to a saved HTML page"),
    selector: Optional[str] = typer.Option(None, help="Override the content region pattern"),
) -> None:
    """Print every content region as Markdown."""
    config = settings.model_copy(update={"content_selector": selector}) if selector else settings
    soup = _load(html_path)
    registry = RenderStateRegistry(soup)
    extractor = ContentExtractor(config, registry)

    regions = _regions(soup, config)
    if not regions:
        console.print("[yellow]No content regions found[/yellow]")
        raise typer.Exit(code=1)

    for index, region in enumerate(regions, start=1):
        console.rule(f"Region {index}")
        console.print(extractor.extract(region), markup=False, highlight=False)


@app.command()
def regions(
    html_path: Path = typer.Argument(..., help="Path to a saved HTML page"),
) -> None:
    """List content regions and the rich content found in each."""
    soup = _load(html_path)
    registry = RenderStateRegistry(soup)
    extractor = ContentExtractor(settings, registry)

    table = Table(title=f"Content regions in {html_path.name}")
    table.add_column("#", justify="right")
    table.add_column("Tag")
    table.add_column("Rich content")
    table.add_column("Chars", justify="right")

    for index, region in enumerate(_regions(soup, settings), start=1):
        counts: dict[str, int] = {}
        for node in extractor.collect(region):
            counts[node.kind.value] = counts.get(node.kind.value, 0) + 1
        summary = ", ".join(f"{kind} x{count}" for kind, count in sorted(counts.items()))
        table.add_row(
            str(index),
            region.name,
            summary or "[dim]prose[/dim]",
            str(len(extractor.extract(region))),
        )

    console.print(table)


@app.command("config")
def show_config() -> None:
    """Show the effective settings."""
    table = Table(title="Settings")
    table.add_column("Name")
    table.add_column("Value")
    for name, value in settings.model_dump().items():
        table.add_row(name, str(value))
    console.print(table)


if __name__ == "__main__":
    app()
