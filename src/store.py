"""
Relational store for texts, authors and countries.

``TextStore`` owns the engine; ``TextStore.session()`` checks out one session
for a whole crawler or analyzer run and hands back a ``StoreGateway`` with the
operations both pipelines need. The session is closed on every exit path.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Iterator, List, Optional, Set

from sqlalchemy import Column, Date, ForeignKey, Integer, String, create_engine, func, or_
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from config import DATABASE_URL
from errors import StoreUnavailableError

logger = logging.getLogger(__name__)

Base = declarative_base()


# =============================================================================
# MODELS
# =============================================================================

class Country(Base):
    """Lookup table, filled lazily when authors are resolved."""
    __tablename__ = "countries"

    country_id = Column(Integer, primary_key=True, autoincrement=True)
    country_name = Column(String(200), unique=True, nullable=False)


class Author(Base):
    """Catalog author plus the aggregate statistics computed by the analyzer."""
    __tablename__ = "authors"

    author_id = Column(String(64), primary_key=True)
    author_name = Column(String(500), nullable=True)
    author_original_name = Column(String(500), nullable=True)
    country_id = Column(Integer, ForeignKey("countries.country_id"), nullable=True)

    unique_words_count = Column(Integer, nullable=True)
    words_per_sentence_count = Column(Integer, nullable=True)
    longest_sentence_words_count = Column(Integer, nullable=True)
    last_date_of_update = Column(Date, nullable=True)


class Text(Base):
    """One downloaded text; ``unique_words_count`` stays NULL until analyzed."""
    __tablename__ = "texts"

    text_id = Column(String(64), primary_key=True)
    title = Column(String(1000), nullable=True)
    author_id = Column(String(64), ForeignKey("authors.author_id"), nullable=True)
    unique_words_count = Column(Integer, nullable=True)
    last_date_of_update = Column(Date, nullable=True)


# =============================================================================
# ROW TYPES
# =============================================================================

@dataclass
class PendingAuthor:
    author_id: str
    country_name: Optional[str]


@dataclass
class TextRow:
    text_id: str
    title: Optional[str]
    unique_words_count: Optional[int]


@dataclass
class AuthorStats:
    """Aggregates written back for an author; ``None`` means "no value"."""
    avg_words_per_sentence: Optional[int]
    unique_words_count: Optional[int]
    longest_sentence: Optional[int]


@dataclass
class AuthorSummary:
    author_id: str
    name: Optional[str]
    country_name: Optional[str]
    unique_words_count: Optional[int]
    words_per_sentence_count: Optional[int]
    longest_sentence_words_count: Optional[int]
    last_date_of_update: Optional[date]


@dataclass
class CorpusSummary:
    total_texts: int
    analyzed_texts: int
    total_unique_words: int
    total_authors: int
    analyzed_authors: int


# =============================================================================
# GATEWAY
# =============================================================================

class StoreGateway:
    """Operations on one open session. Every write commits immediately."""

    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def _write(self) -> Iterator[Session]:
        try:
            yield self.session
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

    # --- crawler side -------------------------------------------------------

    def list_known_text_ids(self) -> Set[str]:
        return {str(text_id) for (text_id,) in self.session.query(Text.text_id)}

    def find_or_create_country(self, name: Optional[str]) -> Optional[int]:
        """Country ID for ``name``, inserting it on first use."""
        if not name:
            return None
        country = self.session.query(Country).filter_by(country_name=name).first()
        if country is not None:
            return country.country_id
        with self._write() as session:
            country = Country(country_name=name)
            session.add(country)
            session.flush()
            country_id = country.country_id
        return country_id

    def upsert_author(
        self,
        author_id: str,
        name: Optional[str],
        original_name: Optional[str],
        country_id: Optional[int],
    ) -> None:
        """Insert or refresh the identity fields; statistics are left alone."""
        with self._write() as session:
            author = session.get(Author, str(author_id))
            if author is None:
                author = Author(author_id=str(author_id))
                session.add(author)
            author.author_name = name
            author.author_original_name = original_name
            author.country_id = country_id

    def upsert_text(self, text_id: str, title: Optional[str], author_id: Optional[str]) -> None:
        """Insert or refresh title/author; an existing word count is kept."""
        with self._write() as session:
            text = session.get(Text, str(text_id))
            if text is None:
                text = Text(text_id=str(text_id))
                session.add(text)
            text.title = title
            text.author_id = str(author_id) if author_id is not None else None

    # --- analyzer side ------------------------------------------------------

    def list_authors_pending_analysis(self, today: Optional[date] = None) -> List[PendingAuthor]:
        """Authors owning at least one text and not analyzed on ``today``."""
        today = today or date.today()
        rows = (
            self.session.query(Author.author_id, Country.country_name)
            .join(Text, Text.author_id == Author.author_id)
            .outerjoin(Country, Author.country_id == Country.country_id)
            .filter(or_(
                Author.last_date_of_update.is_(None),
                Author.last_date_of_update != today,
            ))
            .distinct()
            .all()
        )
        return [PendingAuthor(author_id=row[0], country_name=row[1]) for row in rows]

    def get_text(self, text_id: str) -> Optional[TextRow]:
        text = self.session.get(Text, str(text_id))
        if text is None:
            return None
        return TextRow(text_id=text.text_id, title=text.title, unique_words_count=text.unique_words_count)

    def list_texts_for_author(self, author_id: str) -> List[TextRow]:
        rows = (
            self.session.query(Text.text_id, Text.title, Text.unique_words_count)
            .filter(Text.author_id == str(author_id))
            .all()
        )
        return [TextRow(text_id=row[0], title=row[1], unique_words_count=row[2]) for row in rows]

    def update_text_word_count(self, text_id: str, count: int, today: Optional[date] = None) -> bool:
        """Store a text's unique word count. Returns False if the text is unknown."""
        with self._write() as session:
            text = session.get(Text, str(text_id))
            if text is None:
                return False
            text.unique_words_count = count
            text.last_date_of_update = today or date.today()
        return True

    def update_author_stats(self, author_id: str, stats: AuthorStats, today: Optional[date] = None) -> bool:
        """Store an author's aggregates and mark them analyzed on ``today``."""
        with self._write() as session:
            author = session.get(Author, str(author_id))
            if author is None:
                return False
            author.words_per_sentence_count = stats.avg_words_per_sentence
            author.unique_words_count = stats.unique_words_count
            author.longest_sentence_words_count = stats.longest_sentence
            author.last_date_of_update = today or date.today()
        return True

    # --- reporting ----------------------------------------------------------

    def corpus_summary(self) -> CorpusSummary:
        total_texts = self.session.query(func.count(Text.text_id)).scalar() or 0
        analyzed_texts = (
            self.session.query(func.count(Text.text_id))
            .filter(Text.unique_words_count.isnot(None))
            .scalar() or 0
        )
        total_unique_words = self.session.query(func.sum(Text.unique_words_count)).scalar() or 0
        total_authors = (
            self.session.query(func.count(func.distinct(Text.author_id)))
            .filter(Text.author_id.isnot(None))
            .scalar() or 0
        )
        analyzed_authors = (
            self.session.query(func.count(func.distinct(Text.author_id)))
            .join(Author, Author.author_id == Text.author_id)
            .filter(Author.unique_words_count.isnot(None))
            .scalar() or 0
        )
        return CorpusSummary(
            total_texts=int(total_texts),
            analyzed_texts=int(analyzed_texts),
            total_unique_words=int(total_unique_words),
            total_authors=int(total_authors),
            analyzed_authors=int(analyzed_authors),
        )

    def top_authors(self, limit: int = 10) -> List[AuthorSummary]:
        """Authors by unique word count, highest first, unanalyzed last."""
        rows = (
            self.session.query(Author, Country.country_name)
            .outerjoin(Country, Author.country_id == Country.country_id)
            .order_by(
                Author.unique_words_count.is_(None),
                Author.unique_words_count.desc(),
                Author.author_name,
            )
            .limit(limit)
            .all()
        )
        return [
            AuthorSummary(
                author_id=author.author_id,
                name=author.author_name,
                country_name=country_name,
                unique_words_count=author.unique_words_count,
                words_per_sentence_count=author.words_per_sentence_count,
                longest_sentence_words_count=author.longest_sentence_words_count,
                last_date_of_update=author.last_date_of_update,
            )
            for author, country_name in rows
        ]


# =============================================================================
# STORE
# =============================================================================

def _ensure_sqlite_folder(database_url: str) -> None:
    """Create the folder of a file-backed SQLite database; other URLs are left alone."""
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return
    database = url.database
    if not database or database == ":memory:" or database.startswith("file:"):
        return
    Path(database).parent.mkdir(parents=True, exist_ok=True)


class TextStore:
    """Engine plus session factory for the corpus database."""

    def __init__(self, database_url: str = DATABASE_URL, echo: bool = False):
        self.database_url = database_url
        try:
            _ensure_sqlite_folder(database_url)
            self.engine = create_engine(database_url, echo=echo)
            Base.metadata.create_all(self.engine)
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailableError(f"cannot open store {database_url}: {exc}") from exc
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @contextmanager
    def session(self) -> Iterator[StoreGateway]:
        """
        Check out one session for a run.

        Raises:
            StoreUnavailableError: if no connection can be established.
        """
        session = self._session_factory()
        try:
            try:
                session.connection()
            except SQLAlchemyError as exc:
                raise StoreUnavailableError(f"cannot connect to store: {exc}") from exc
            yield StoreGateway(session)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
