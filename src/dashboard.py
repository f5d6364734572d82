"""
Live dashboard and summaries using Rich.
Shows crawl progress against the quota, skip reasons and rate limiting.
"""

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING, List, Optional

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from crawler import CrawlStats, TextCrawler
    from store import AuthorSummary, CorpusSummary
    from text_analyzer import AnalysisReport


def _format_duration(seconds: float) -> str:
    """Format seconds as HH:MM:SS."""
    return str(timedelta(seconds=int(seconds)))


def _bar(fraction: float, width: int = 20) -> str:
    filled = int(max(0.0, min(1.0, fraction)) * width)
    return "█" * filled + "░" * (width - filled)


class LiveDashboard:
    """
    Real-time terminal dashboard for a crawl run.
    """

    def __init__(self, crawler: "TextCrawler", console: Optional[Console] = None):
        self.crawler = crawler
        self.console = console or Console()
        self._running = False

    def _make_header(self) -> Panel:
        header_text = Text()
        header_text.append("📚 ", style="bold")
        header_text.append("Literary Corpus Crawler", style="bold cyan")
        return Panel(header_text, style="bold white on dark_blue")

    def _make_progress_table(self) -> Table:
        stats = self.crawler.stats

        table = Table(title="📊 Crawl Progress", expand=True, title_style="bold magenta")
        table.add_column("Metric", style="cyan", justify="left")
        table.add_column("Value", style="green", justify="right")
        table.add_column("Progress", justify="left")

        table.add_row(
            "Saved",
            f"{stats.saved:,} / {stats.quota:,}",
            f"[green]{_bar(stats.progress_percent / 100)}[/green] {stats.progress_percent:.1f}%",
        )
        table.add_row("Query keys", f"{stats.queries:,}", f"[dim]{stats.current_query}[/dim]")
        table.add_row("Candidates", f"{stats.candidates:,}", "")
        table.add_section()
        table.add_row("Already in store", f"{stats.skipped_known:,}", "")
        table.add_row("Already on disk", f"{stats.skipped_existing_file:,}", "")
        table.add_row("Download failures", f"{stats.download_failures:,}", "")
        table.add_row("Unpack failures", f"{stats.unpack_failures:,}", "")
        return table

    def _make_status_panel(self) -> Panel:
        stats = self.crawler.stats

        status_table = Table.grid(padding=(0, 2))
        status_table.add_column(justify="right", style="bold")
        status_table.add_column(justify="left")

        status_table.add_row("⏱️  Session:", _format_duration(stats.elapsed_time))
        status_table.add_row("⚡ Speed:", f"{stats.saves_per_minute:.1f} texts/min")
        status_table.add_row("👤 Authors:", f"{stats.authors_resolved:,} resolved")
        status_table.add_row("", Text(f"{stats.authors_unresolved:,} unresolved", style="dim"))

        return Panel(status_table, title="🔧 Status", border_style="blue")

    def _make_rate_limit_panel(self) -> Panel:
        stats = self.crawler.stats

        rate_table = Table.grid(padding=(0, 2))
        rate_table.add_column(justify="right", style="bold")
        rate_table.add_column(justify="left")

        if stats.rate_limit_hits:
            rate_table.add_row("🐢 429s:", Text(f"{stats.rate_limit_hits:,}", style="bold yellow"))
        else:
            rate_table.add_row("🐢 429s:", Text("None", style="green"))
        if stats.network_errors:
            rate_table.add_row("❌ Network:", Text(f"{stats.network_errors:,}", style="bold red"))
        else:
            rate_table.add_row("❌ Network:", Text("None", style="green"))

        return Panel(rate_table, title="🚦 Health", border_style="yellow")

    def _make_activity_panel(self) -> Panel:
        stats = self.crawler.stats

        if stats.recent_saves:
            activity_text = Text()
            for i, name in enumerate(list(stats.recent_saves)[-5:]):
                if i > 0:
                    activity_text.append("\n")
                activity_text.append("→ ", style="green")
                activity_text.append(name, style="dim")
        else:
            activity_text = Text("Waiting for the first save...", style="dim italic")

        return Panel(activity_text, title="💾 Recently Saved", border_style="green")

    def generate_layout(self) -> Layout:
        """Generate the full dashboard layout."""
        layout = Layout()

        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="body"),
            Layout(name="footer", size=8),
        )
        layout["body"].split_row(
            Layout(name="main", ratio=2),
            Layout(name="sidebar", ratio=1),
        )
        layout["sidebar"].split_column(
            Layout(name="status"),
            Layout(name="rate_limit"),
        )

        layout["header"].update(self._make_header())
        layout["main"].update(self._make_progress_table())
        layout["status"].update(self._make_status_panel())
        layout["rate_limit"].update(self._make_rate_limit_panel())
        layout["footer"].update(self._make_activity_panel())

        return layout

    async def run(self, refresh_rate: float = 0.5):
        """Run the live dashboard until stop() is called."""
        self._running = True

        with Live(self.generate_layout(), console=self.console,
                  refresh_per_second=int(1 / refresh_rate), screen=True) as live:
            while self._running:
                live.update(self.generate_layout())
                await asyncio.sleep(refresh_rate)

    def stop(self):
        self._running = False


def print_crawl_summary(stats: "CrawlStats", console: Optional[Console] = None):
    """Print final summary after a crawl."""
    console = console or Console()

    title = "⏹️  Crawl Stopped" if stats.stopped else "✅ Crawl Complete!"
    console.print()
    console.print(Panel.fit(f"[bold green]{title}[/bold green]", border_style="green"))

    table = Table(title="📊 Final Results", expand=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="green", justify="right")

    table.add_row("New texts saved", f"{stats.saved:,} / {stats.quota:,}")
    table.add_row("Query keys searched", f"{stats.queries:,}")
    table.add_row("Candidates seen", f"{stats.candidates:,}")
    table.add_section()
    table.add_row("Skipped (in store)", f"{stats.skipped_known:,}")
    table.add_row("Skipped (on disk)", f"{stats.skipped_existing_file:,}")
    table.add_row("Download failures", f"{stats.download_failures:,}")
    table.add_row("Unpack failures", f"{stats.unpack_failures:,}")
    table.add_row("Authors resolved", f"{stats.authors_resolved:,}")
    table.add_row("Authors unresolved", f"{stats.authors_unresolved:,}")

    console.print(table)

    if stats.rate_limit_hits or stats.network_errors:
        console.print("\n[yellow]🚦 Rate Limiting Summary:[/yellow]")
        console.print(f"   429 responses: {stats.rate_limit_hits:,}")
        console.print(f"   Network errors: {stats.network_errors:,}")

    console.print(f"\n⏱️  Runtime: {_format_duration(stats.elapsed_time)}")
    console.print(f"⚡ Average speed: {stats.saves_per_minute:.1f} texts/minute")


def print_analysis_summary(report: "AnalysisReport", console: Optional[Console] = None):
    """Print final summary after an analyzer run."""
    console = console or Console()

    console.print()
    console.print(Panel.fit("[bold green]✅ Analysis Complete![/bold green]", border_style="green"))

    table = Table(title="🔎 Analysis Results", expand=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="green", justify="right")

    table.add_row("Authors selected", f"{report.authors_selected:,}")
    table.add_row("Authors updated", f"{report.authors_updated:,}")
    table.add_row("Texts analyzed", f"{report.texts_analyzed:,}")
    table.add_row("Texts already analyzed", f"{report.texts_already_done:,}")
    table.add_row("Texts missing on disk", f"{report.texts_missing:,}")
    table.add_section()
    table.add_row("Unknown-folder texts analyzed", f"{report.unknown_analyzed:,}")
    table.add_row("Unknown-folder files skipped", f"{report.unknown_skipped:,}")

    console.print(table)


def print_corpus_report(
    summary: "CorpusSummary",
    authors: List["AuthorSummary"],
    console: Optional[Console] = None,
):
    """Print corpus totals and the top authors by vocabulary."""
    console = console or Console()

    totals = Table(title="📚 Corpus", expand=False)
    totals.add_column("Metric", style="cyan")
    totals.add_column("Value", style="green", justify="right")
    totals.add_row("Texts", f"{summary.total_texts:,}")
    totals.add_row("Texts analyzed", f"{summary.analyzed_texts:,}")
    totals.add_row("Unique words (sum over texts)", f"{summary.total_unique_words:,}")
    totals.add_row("Authors", f"{summary.total_authors:,}")
    totals.add_row("Authors analyzed", f"{summary.analyzed_authors:,}")
    console.print(totals)

    if not authors:
        console.print("[dim]No authors yet.[/dim]")
        return

    table = Table(title="🏆 Top Authors by Unique Words", expand=False)
    table.add_column("Author", style="cyan")
    table.add_column("Country", style="dim")
    table.add_column("Unique words", style="green", justify="right")
    table.add_column("Words/sentence", style="yellow", justify="right")
    table.add_column("Longest sentence", style="yellow", justify="right")
    table.add_column("Updated", style="dim")

    def _num(value: Optional[int]) -> str:
        return f"{value:,}" if value is not None else "-"

    for author in authors:
        table.add_row(
            author.name or author.author_id,
            author.country_name or "Unknown",
            _num(author.unique_words_count),
            _num(author.words_per_sentence_count),
            _num(author.longest_sentence_words_count),
            author.last_date_of_update.isoformat() if author.last_date_of_update else "-",
        )
    console.print(table)
