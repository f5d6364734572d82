"""Shared fixtures: temporary store, fake HTTP session and a scripted catalog."""

import io
import zipfile
from typing import Callable, Dict, List, Optional, Union
from urllib.parse import quote
from xml.sax.saxutils import escape

import pytest

from catalog import CatalogClient
from config import SEARCH_URL, PERSON_URL, DOWNLOAD_URL
from fetcher import RateLimitedFetcher
from store import TextStore


# =============================================================================
# FAKE aiohttp SESSION
# =============================================================================

class FakeResponse:
    """Stands in for an aiohttp response used as an async context manager."""

    def __init__(self, status: int = 200, body: Union[bytes, str] = b"", headers: Optional[dict] = None):
        self.status = status
        self.body = body.encode("utf-8") if isinstance(body, str) else body
        self.headers = headers or {}

    async def read(self) -> bytes:
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


Handler = Callable[[str], Union[FakeResponse, BaseException]]


class FakeSession:
    """Records every GET and answers it through ``handler``."""

    def __init__(self, handler: Handler):
        self.handler = handler
        self.calls: List[str] = []
        self.options: List[dict] = []

    def get(self, url: str, **options):
        self.calls.append(url)
        self.options.append(options)
        result = self.handler(url)
        if isinstance(result, BaseException):
            raise result
        return result


class RecordingSleep:
    """Async sleep replacement that only records the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float):
        self.delays.append(seconds)


# =============================================================================
# CATALOG PAYLOADS
# =============================================================================

def search_xml(*texts: dict) -> str:
    items = []
    for t in texts:
        author = f"<author><id>{t['author_id']}</id></author>" if t.get("author_id") else ""
        items.append(
            "<text>"
            f"<id>{t['id']}</id>"
            f"<title>{escape(t.get('title', ''))}</title>"
            f"<subtitle>{escape(t.get('subtitle', ''))}</subtitle>"
            f"{author}"
            f"<year>{t.get('year', '')}</year>"
            "</text>"
        )
    return ('<?xml version="1.0" encoding="UTF-8"?>'
            f"<results><texts>{''.join(items)}</texts></results>")


def person_xml(name: str, real_name: str = "", country: str = "") -> str:
    return ('<?xml version="1.0" encoding="UTF-8"?>'
            "<results><persons><person>"
            f"<name>{escape(name)}</name>"
            f"<real-name>{escape(real_name)}</real-name>"
            f"<country>{escape(country)}</country>"
            "</person></persons></results>")


def make_zip(files: Dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in files.items():
            archive.writestr(name, content.encode("utf-8"))
    return buffer.getvalue()


class FakeCatalog:
    """
    Scripted catalog keyed by search query, author ID and text ID.

    Unknown URLs answer 404. ``packages`` values may be bytes (served as-is)
    or an int status code.
    """

    def __init__(self):
        self.searches: Dict[str, str] = {}
        self.persons: Dict[str, Union[str, int]] = {}
        self.packages: Dict[str, Union[bytes, int]] = {}
        self.on_search: Optional[Callable[[str], None]] = None

    def search_url(self, query: str) -> str:
        return SEARCH_URL.format(query=quote(query))

    def person_url(self, author_id: str) -> str:
        return PERSON_URL.format(author_id=quote(author_id))

    def download_url(self, text_id: str) -> str:
        return DOWNLOAD_URL.format(text_id=quote(text_id))

    def handle(self, url: str):
        for query, payload in self.searches.items():
            if url == self.search_url(query):
                if self.on_search:
                    self.on_search(url)
                return FakeResponse(200, payload)
        for author_id, payload in self.persons.items():
            if url == self.person_url(author_id):
                if isinstance(payload, int):
                    return FakeResponse(payload)
                return FakeResponse(200, payload)
        for text_id, payload in self.packages.items():
            if url == self.download_url(text_id):
                if isinstance(payload, int):
                    return FakeResponse(payload)
                return FakeResponse(200, payload)
        if url.startswith(SEARCH_URL.split("?")[0]):
            if self.on_search:
                self.on_search(url)
            return FakeResponse(200, search_xml())
        return FakeResponse(404)

    def calls_to(self, session: FakeSession, prefix: str) -> List[str]:
        return [u for u in session.calls if u.startswith(prefix)]


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def store(tmp_path):
    text_store = TextStore(f"sqlite:///{tmp_path / 'corpus.db'}")
    yield text_store
    text_store.dispose()


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "texts"
    path.mkdir()
    return path


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def fake_catalog():
    return FakeCatalog()


@pytest.fixture
def catalog_session(fake_catalog):
    return FakeSession(fake_catalog.handle)


@pytest.fixture
def catalog_client(catalog_session, recording_sleep):
    fetcher = RateLimitedFetcher(catalog_session, sleep=recording_sleep)
    return CatalogClient(fetcher)
