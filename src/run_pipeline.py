#!/usr/bin/env python3
"""
Literary Corpus Crawler & Analyzer
==================================
Main entry point for crawling the catalog and analyzing the downloaded texts.

Commands:
- crawl    download up to --quota new texts
- analyze  compute statistics for texts and authors
- import   crawl, then analyze
- report   print corpus totals and top authors
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from tqdm import tqdm

import config
from catalog import CatalogClient
from crawler import CrawlStats, TextCrawler
from dashboard import (
    LiveDashboard,
    print_analysis_summary,
    print_corpus_report,
    print_crawl_summary,
)
from errors import CorpusError
from fetcher import RateLimitedFetcher, create_session
from logging_setup import setup_logging
from store import TextStore
from text_analyzer import AnalysisReport, TextAnalyzer

logger = logging.getLogger(__name__)

console = Console()

BANNER = """
[bold blue]╔══════════════════════════════════════════════════════════════╗
║     [cyan]Literary Corpus Crawler & Analyzer[/cyan]                       ║
╚══════════════════════════════════════════════════════════════╝[/bold blue]
"""


def _install_stop_handler(crawler: TextCrawler) -> List[int]:
    """Route SIGINT/SIGTERM to crawler.stop() so the run ends cleanly."""
    if sys.platform == "win32":
        return []

    def shutdown_handler():
        console.print("\n[yellow]⚠️  Shutting down after the current text...[/yellow]")
        crawler.stop()

    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown_handler)
        installed.append(sig)
    return installed


def _remove_stop_handler(signals: List[int]):
    """Give SIGINT/SIGTERM back to the default handling once the crawl is over."""
    loop = asyncio.get_running_loop()
    for sig in signals:
        loop.remove_signal_handler(sig)


async def _run_with_dashboard(crawler: TextCrawler, quota: int) -> CrawlStats:
    dashboard = LiveDashboard(crawler, console=console)
    dashboard_task = asyncio.create_task(dashboard.run())
    try:
        return await crawler.run(quota)
    finally:
        dashboard.stop()
        try:
            await asyncio.wait_for(dashboard_task, timeout=1.0)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            pass


async def _run_with_progress_bar(crawler: TextCrawler, quota: int) -> CrawlStats:
    async def progress_display():
        with tqdm(total=quota, desc="Crawling", unit=" texts") as pbar:
            last_count = 0
            while True:
                current = crawler.stats.saved
                pbar.update(current - last_count)
                pbar.set_postfix({
                    "key": crawler.stats.current_query,
                    "candidates": crawler.stats.candidates,
                })
                last_count = current
                await asyncio.sleep(0.5)

    progress_task = asyncio.create_task(progress_display())
    try:
        return await crawler.run(quota)
    finally:
        progress_task.cancel()
        try:
            await progress_task
        except asyncio.CancelledError:
            pass


async def run_crawl(args, store: TextStore) -> CrawlStats:
    """Crawl with the configured catalog until the quota is met."""
    async with create_session() as session:
        fetcher = RateLimitedFetcher(session)
        crawler = TextCrawler(store, CatalogClient(fetcher), data_dir=args.data_dir)
        installed = _install_stop_handler(crawler)
        try:
            if args.no_dashboard:
                stats = await _run_with_progress_bar(crawler, args.quota)
            else:
                stats = await _run_with_dashboard(crawler, args.quota)
        finally:
            _remove_stop_handler(installed)

    print_crawl_summary(stats, console)
    return stats


async def run_analysis(args, store: TextStore) -> AnalysisReport:
    analyzer = TextAnalyzer(store, data_dir=args.data_dir)
    report = await analyzer.run()
    print_analysis_summary(report, console)
    return report


def run_report(args, store: TextStore):
    with store.session() as gateway:
        summary = gateway.corpus_summary()
        authors = gateway.top_authors(args.top)
    print_corpus_report(summary, authors, console)


async def main(args) -> int:
    """Dispatch a parsed command. Returns the process exit code."""
    console.print(BANNER)
    log_file = setup_logging(args.command, level=args.log_level, console=console)
    console.print(f"[dim]Data: {args.data_dir}  |  Log: {log_file}[/dim]\n")

    try:
        store = TextStore(args.database_url)
        try:
            if args.command == "crawl":
                await run_crawl(args, store)
            elif args.command == "analyze":
                await run_analysis(args, store)
            elif args.command == "import":
                await run_crawl(args, store)
                await run_analysis(args, store)
            elif args.command == "report":
                run_report(args, store)
        finally:
            store.dispose()
    except CorpusError as e:
        console.print(f"[red]❌ {e}[/red]")
        return 1

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Literary Corpus Crawler & Analyzer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_pipeline.py crawl --quota 50     # Download 50 new texts
  python run_pipeline.py analyze              # Analyze downloaded texts
  python run_pipeline.py import               # Crawl 100 texts, then analyze
  python run_pipeline.py report --top 20      # Show top 20 authors
        """
    )

    # Shared options, accepted after any command
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--data-dir", type=Path, default=config.DATA_DIR,
                        help=f"Root folder of the text files (default: {config.DATA_DIR})")
    common.add_argument("--database-url", default=config.DATABASE_URL,
                        help="SQLAlchemy database URL")
    common.add_argument("--log-level", default=config.LOG_LEVEL,
                        help=f"Logging level (default: {config.LOG_LEVEL})")

    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("crawl", "Download new texts from the catalog"),
        ("import", "Crawl, then analyze"),
    ):
        sub = subparsers.add_parser(name, help=help_text, parents=[common])
        sub.add_argument("--quota", type=int, default=config.DEFAULT_QUOTA,
                         help=f"Number of new texts to save (default: {config.DEFAULT_QUOTA})")
        sub.add_argument("--no-dashboard", action="store_true",
                         help="Show a simple progress bar instead of the live dashboard")

    subparsers.add_parser("analyze", help="Compute statistics for downloaded texts", parents=[common])

    report = subparsers.add_parser("report", help="Print corpus totals and top authors", parents=[common])
    report.add_argument("--top", type=int, default=10,
                        help="Number of authors to list (default: 10)")

    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    args = build_parser().parse_args(argv)
    if getattr(args, "quota", 1) < 1:
        build_parser().error("--quota must be at least 1")
    return args


def cli(argv: Optional[List[str]] = None) -> int:
    """Command-line interface."""
    args = parse_args(argv)

    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

    try:
        return asyncio.run(main(args))
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠️  Interrupted by user[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(cli())
