"""
Async crawler that fills the corpus from the remote catalog.

Features:
- Pages through keyword search with every 3-letter key (catalog has no listing)
- Skips texts already in the store or already on disk (incremental, idempotent)
- Author lookups cached per run and serialized through a single permit
- Fixed pacing after every author lookup, saved text and query key
- Stops at the caller's quota, when the key space is exhausted, or on stop()

Failures while searching, resolving an author, downloading or unpacking only
skip the affected unit of work. Failing to load the baseline from the store
aborts the run.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Deque, Dict, Iterable, Optional, Set

import aiofiles
from sqlalchemy.exc import SQLAlchemyError

from catalog import CatalogClient, PersonRecord, TextCandidate, extract_text_from_package
from config import (
    DATA_DIR,
    AUTHOR_LOOKUP_DELAY,
    SAVE_DELAY,
    QUERY_DELAY,
    DEFAULT_QUOTA,
    FILE_ENCODING,
)
from corpus_files import country_folder, scan_existing_files, text_file_name
from errors import PackageError, StoreUnavailableError
from query_space import generate_query_keys
from store import StoreGateway, TextStore

logger = logging.getLogger(__name__)


@dataclass
class ResolvedAuthor:
    """An author looked up and stored during this run."""
    author_id: str
    name: str
    original_name: str
    country: Optional[str]
    country_id: Optional[int]


@dataclass
class CrawlRun:
    """
    State private to one crawl run.

    Rebuilt from the store and the filesystem on every run; never persisted.
    """
    quota: int
    seen_ids: Set[str] = field(default_factory=set)
    existing_files: Set[str] = field(default_factory=set)
    author_cache: Dict[str, ResolvedAuthor] = field(default_factory=dict)
    saved: int = 0

    @property
    def quota_reached(self) -> bool:
        return self.saved >= self.quota


@dataclass
class CrawlStats:
    """Counters for progress display and the final summary."""
    quota: int = 0
    saved: int = 0
    queries: int = 0
    candidates: int = 0
    skipped_known: int = 0
    skipped_existing_file: int = 0
    download_failures: int = 0
    unpack_failures: int = 0
    authors_resolved: int = 0
    authors_unresolved: int = 0
    rate_limit_hits: int = 0
    network_errors: int = 0
    current_query: str = ""
    stopped: bool = False
    recent_saves: Deque[str] = field(default_factory=lambda: deque(maxlen=8))
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    @property
    def elapsed_time(self) -> float:
        end = self.end_time if self.end_time is not None else time.time()
        return end - self.start_time

    @property
    def saves_per_minute(self) -> float:
        elapsed = self.elapsed_time
        if elapsed > 0:
            return (self.saved / elapsed) * 60
        return 0

    @property
    def progress_percent(self) -> float:
        if self.quota > 0:
            return min(100.0, (self.saved / self.quota) * 100)
        return 0


class TextCrawler:
    """
    Sequential crawler: one query key at a time, one candidate at a time.

    Only author lookups go through a permit; they are the traffic the
    catalog's metadata endpoint rate-limits.
    """

    def __init__(
        self,
        store: TextStore,
        catalog: CatalogClient,
        data_dir: Path = DATA_DIR,
        query_keys: Optional[Iterable[str]] = None,
        author_delay: float = AUTHOR_LOOKUP_DELAY,
        save_delay: float = SAVE_DELAY,
        query_delay: float = QUERY_DELAY,
    ):
        self.store = store
        self.catalog = catalog
        self.data_dir = Path(data_dir)
        self._query_keys = query_keys
        self.author_delay = author_delay
        self.save_delay = save_delay
        self.query_delay = query_delay

        self._author_permit = asyncio.Semaphore(1)
        self._stop_event = asyncio.Event()
        self.stats = CrawlStats()

    # --- control ------------------------------------------------------------

    def stop(self):
        """Ask the crawl to stop at the next candidate or query boundary."""
        self._stop_event.set()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    async def _pause(self, seconds: float):
        """Sleep that returns early when stop() is called."""
        if seconds <= 0 or self.stopping:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _sync_fetch_stats(self):
        fetcher = self.catalog.fetcher
        self.stats.rate_limit_hits = fetcher.rate_limit_hits
        self.stats.network_errors = fetcher.network_errors

    # --- authors ------------------------------------------------------------

    async def resolve_author(
        self,
        gateway: StoreGateway,
        run: CrawlRun,
        author_id: Optional[str],
    ) -> Optional[ResolvedAuthor]:
        """
        Cached author for ``author_id``, looking it up on a cache miss.

        Returns None when the candidate has no author or the lookup fails;
        failed lookups are not cached.
        """
        if not author_id:
            return None
        cached = run.author_cache.get(author_id)
        if cached is not None:
            return cached

        async with self._author_permit:
            # Another lookup may have filled the cache while we waited
            cached = run.author_cache.get(author_id)
            if cached is not None:
                return cached
            try:
                person = await self.catalog.fetch_person(author_id)
                author = self._store_author(gateway, person) if person else None
            finally:
                await self._pause(self.author_delay)

        if author is None:
            self.stats.authors_unresolved += 1
            return None

        run.author_cache[author_id] = author
        self.stats.authors_resolved += 1
        return author

    def _store_author(self, gateway: StoreGateway, person: PersonRecord) -> ResolvedAuthor:
        country_id = gateway.find_or_create_country(person.country)
        gateway.upsert_author(person.author_id, person.name, person.original_name, country_id)
        return ResolvedAuthor(
            author_id=person.author_id,
            name=person.name,
            original_name=person.original_name,
            country=person.country,
            country_id=country_id,
        )

    # --- texts --------------------------------------------------------------

    async def _write_text(self, path: Path, content: str):
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, mode="w", encoding=FILE_ENCODING) as f:
            await f.write(content)

    async def process_candidate(
        self,
        gateway: StoreGateway,
        run: CrawlRun,
        candidate: TextCandidate,
    ) -> bool:
        """
        Try to save one candidate. Returns True only if a new file was written.
        """
        file_name = text_file_name(candidate.text_id, candidate.title)

        if file_name in run.existing_files:
            self.stats.skipped_existing_file += 1
            logger.debug("Skip %s: file already on disk", file_name)
            return False
        if str(candidate.text_id) in run.seen_ids:
            self.stats.skipped_known += 1
            logger.debug("Skip %s: already in store", candidate.text_id)
            return False

        author = await self.resolve_author(gateway, run, candidate.author_id)

        logger.info("[%d/%d] Downloading: %s", run.saved + 1, run.quota, candidate.title)
        package = await self.catalog.download_package(candidate.text_id)
        if package is None:
            self.stats.download_failures += 1
            return False

        try:
            content = extract_text_from_package(package)
        except PackageError as exc:
            self.stats.unpack_failures += 1
            logger.warning("Skip text %s: %s", candidate.text_id, exc)
            return False

        gateway.upsert_text(
            candidate.text_id,
            candidate.title,
            author.author_id if author else None,
        )
        run.seen_ids.add(str(candidate.text_id))

        path = self.data_dir / country_folder(author.country if author else None) / file_name
        await self._write_text(path, content)
        run.existing_files.add(file_name)

        run.saved += 1
        self.stats.saved = run.saved
        self.stats.recent_saves.append(file_name)
        logger.info("[%d/%d] Saved: %s", run.saved, run.quota, file_name)
        return True

    # --- run ----------------------------------------------------------------

    def _load_run_state(self, gateway: StoreGateway, quota: int) -> CrawlRun:
        try:
            seen_ids = gateway.list_known_text_ids()
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"cannot load known text IDs: {exc}") from exc
        existing_files = scan_existing_files(self.data_dir)
        logger.info(
            "Baseline: %d texts in store, %d files on disk",
            len(seen_ids), len(existing_files),
        )
        return CrawlRun(quota=quota, seen_ids=seen_ids, existing_files=existing_files)

    async def _crawl(self, gateway: StoreGateway, run: CrawlRun):
        keys = self._query_keys if self._query_keys is not None else generate_query_keys()

        for key in keys:
            if run.quota_reached or self.stopping:
                break

            self.stats.current_query = key
            self.stats.queries += 1
            logger.info("Searching key: %s", key)
            candidates = await self.catalog.search_texts(key)
            self.stats.candidates += len(candidates)

            for candidate in candidates:
                if run.quota_reached or self.stopping:
                    break
                if await self.process_candidate(gateway, run, candidate):
                    if run.quota_reached:
                        break
                    await self._pause(self.save_delay)
                self._sync_fetch_stats()

            self._sync_fetch_stats()
            if run.quota_reached or self.stopping:
                break
            await self._pause(self.query_delay)

    async def run(self, quota: int = DEFAULT_QUOTA) -> CrawlStats:
        """
        Crawl until ``quota`` new texts are saved or the key space runs out.

        Raises:
            StoreUnavailableError: if the store cannot be reached for the
            baseline or fails during the run.
        """
        self.stats = CrawlStats(quota=quota)
        logger.info("Starting crawl (quota: %d)", quota)

        try:
            with self.store.session() as gateway:
                run = self._load_run_state(gateway, quota)
                try:
                    await self._crawl(gateway, run)
                except SQLAlchemyError as exc:
                    raise StoreUnavailableError(f"store failure during crawl: {exc}") from exc
        except StoreUnavailableError:
            logger.exception("CRITICAL ERROR: crawl aborted")
            raise
        finally:
            self.stats.end_time = time.time()
            self.stats.stopped = self.stopping

        logger.info("Crawl finished. New files: %d", self.stats.saved)
        return self.stats
