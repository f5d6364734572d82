"""
Text Analytics - lexical statistics over the downloaded corpus
===============================================================

This module implements:
1. Word extraction (runs of Unicode letters, case-folded for uniqueness)
2. Sentence segmentation on runs of . ! ?
3. Per-text statistics: unique words, average words per sentence, longest sentence
4. Pass A: per-author aggregation for authors not analyzed today
5. Pass B: unattributed texts in the "Unknown" folder
"""

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from typing import List, Optional, Set, Tuple

import aiofiles

from config import DATA_DIR, UNKNOWN_DIR_NAME, FILE_ENCODING
from corpus_files import text_file_path
from store import AuthorStats, PendingAuthor, StoreGateway, TextStore

logger = logging.getLogger(__name__)

# =============================================================================
# 1. WORDS & SENTENCES
# =============================================================================

SENTENCE_DELIMITER = re.compile(r"[.!?]+")
UNKNOWN_FILE_PATTERN = re.compile(r"^(\d+)_(.+)\.txt$")


def _is_letter(char: str) -> bool:
    # Unicode categories Lu, Ll, Lt, Lm, Lo
    return unicodedata.category(char).startswith("L")


def extract_words(text: str) -> List[str]:
    """Runs of Unicode letters in ``text``, original case preserved."""
    return "".join(char if _is_letter(char) else " " for char in text).split()


def analyze_text(text: str) -> Tuple[int, Set[str]]:
    """
    Count words and collect the unique ones.

    Returns:
        Tuple of (total word count, set of lowercased words)
    """
    words = extract_words(text)
    return len(words), {w.lower() for w in words}


def split_sentences(text: str) -> List[str]:
    """Split on runs of sentence punctuation, dropping blank pieces."""
    return [s for s in SENTENCE_DELIMITER.split(text) if s.strip()]


def sentence_word_counts(text: str) -> List[int]:
    return [len(extract_words(s)) for s in split_sentences(text)]


def avg_words_per_sentence(text: str) -> float:
    """Total words across sentences divided by sentence count (0 if none)."""
    counts = sentence_word_counts(text)
    if not counts:
        return 0.0
    return sum(counts) / len(counts)


def longest_sentence_words(text: str) -> int:
    """Word count of the longest sentence (0 if none)."""
    counts = sentence_word_counts(text)
    return max(counts) if counts else 0


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (2.5 -> 3)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass
class TextStats:
    total_words: int
    unique_words: Set[str]
    avg_words_per_sentence: float
    longest_sentence: int

    @property
    def unique_count(self) -> int:
        return len(self.unique_words)


def compute_text_stats(text: str) -> TextStats:
    total, unique = analyze_text(text)
    counts = sentence_word_counts(text)
    return TextStats(
        total_words=total,
        unique_words=unique,
        avg_words_per_sentence=(sum(counts) / len(counts)) if counts else 0.0,
        longest_sentence=max(counts) if counts else 0,
    )


# =============================================================================
# 2. AUTHOR AGGREGATION
# =============================================================================

@dataclass
class AuthorAccumulator:
    """Collects per-text results for one author during a run."""
    unique_words: Set[str] = field(default_factory=set)
    averages: List[float] = field(default_factory=list)
    longest_sentence: int = 0
    processed: int = 0

    def add(self, stats: TextStats):
        self.unique_words |= stats.unique_words
        # Texts without sentences must not pull the mean toward zero
        if stats.avg_words_per_sentence > 0:
            self.averages.append(stats.avg_words_per_sentence)
        self.longest_sentence = max(self.longest_sentence, stats.longest_sentence)
        self.processed += 1

    def to_author_stats(self) -> AuthorStats:
        average = None
        if self.averages:
            average = round_half_up(sum(self.averages) / len(self.averages))
        return AuthorStats(
            avg_words_per_sentence=average,
            unique_words_count=len(self.unique_words) or None,
            longest_sentence=self.longest_sentence or None,
        )


@dataclass
class AnalysisReport:
    """Outcome of one analyzer run."""
    authors_selected: int = 0
    authors_updated: int = 0
    texts_analyzed: int = 0
    texts_already_done: int = 0
    texts_missing: int = 0
    unknown_analyzed: int = 0
    unknown_skipped: int = 0


# =============================================================================
# 3. ANALYZER
# =============================================================================

class TextAnalyzer:
    """Computes statistics for stored texts and writes them back to the store."""

    def __init__(self, store: TextStore, data_dir: Path = DATA_DIR):
        self.store = store
        self.data_dir = Path(data_dir)
        self.report = AnalysisReport()

    @property
    def unknown_dir(self) -> Path:
        return self.data_dir / UNKNOWN_DIR_NAME

    async def read_text(self, path: Path) -> Optional[str]:
        """File content, or None if it is missing or unreadable."""
        if not path.is_file():
            return None
        try:
            async with aiofiles.open(path, mode="r", encoding=FILE_ENCODING) as f:
                return await f.read()
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Error reading file %s: %s", path, exc)
            return None

    async def process_author(
        self,
        gateway: StoreGateway,
        author: PendingAuthor,
        today: date,
    ) -> bool:
        """
        Analyze an author's pending texts and store the aggregates.

        Returns True if the author row was updated. Nothing is written for an
        author whose texts were all analyzed already or are missing on disk,
        so such an author stays pending.
        """
        accumulator = AuthorAccumulator()

        for text in gateway.list_texts_for_author(author.author_id):
            if text.unique_words_count is not None:
                self.report.texts_already_done += 1
                continue

            path = text_file_path(self.data_dir, author.country_name, text.text_id, text.title)
            content = await self.read_text(path)
            if not content:
                self.report.texts_missing += 1
                logger.debug("No file for text %s at %s", text.text_id, path)
                continue

            stats = compute_text_stats(content)
            gateway.update_text_word_count(text.text_id, stats.unique_count, today)
            accumulator.add(stats)
            self.report.texts_analyzed += 1
            logger.info('Processed text "%s" (%d words)', text.title, stats.total_words)

        if not accumulator.processed:
            return False

        gateway.update_author_stats(author.author_id, accumulator.to_author_stats(), today)
        self.report.authors_updated += 1
        logger.info("Updated stats for author ID: %s", author.author_id)
        return True

    async def process_unknown_texts(self, gateway: StoreGateway, today: date):
        """Unique word counts for files in the Unknown folder named ``<id>_<rest>.txt``."""
        if not self.unknown_dir.is_dir():
            return

        for path in sorted(self.unknown_dir.iterdir()):
            match = UNKNOWN_FILE_PATTERN.match(path.name)
            if not match or not path.is_file():
                self.report.unknown_skipped += 1
                continue

            text_id = str(int(match.group(1)))
            row = gateway.get_text(text_id)
            if row is None:
                self.report.unknown_skipped += 1
                logger.debug("Unknown file %s has no text row", path.name)
                continue
            if row.unique_words_count is not None:
                self.report.texts_already_done += 1
                continue

            content = await self.read_text(path)
            if not content:
                self.report.unknown_skipped += 1
                continue

            _, unique = analyze_text(content)
            gateway.update_text_word_count(text_id, len(unique), today)
            self.report.unknown_analyzed += 1
            logger.info("Processed unknown text ID: %s", text_id)

    async def run(self, today: Optional[date] = None) -> AnalysisReport:
        """
        Run Pass A (pending authors) then Pass B (Unknown folder).

        Any failure outside per-file reads aborts the run and propagates.
        """
        today = today or date.today()
        self.report = AnalysisReport()
        logger.info("--- Starting analysis (%s) ---", today.isoformat())

        try:
            with self.store.session() as gateway:
                authors = gateway.list_authors_pending_analysis(today)
                self.report.authors_selected = len(authors)
                logger.info("Found %d authors to process.", len(authors))

                for author in authors:
                    await self.process_author(gateway, author, today)

                await self.process_unknown_texts(gateway, today)
        except Exception:
            logger.exception("CRITICAL ERROR in analysis")
            raise

        logger.info("--- Analysis finished successfully ---")
        return self.report
