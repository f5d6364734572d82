"""
Client for the remote text catalog.

Three endpoints are used:
- keyword search (XML list of texts)
- person lookup by exact ID (XML)
- per-text zip package holding one plain-text file

Every public coroutine here degrades to "no data" (empty list / None) instead
of raising, so one bad response never stops a crawl.
"""

import asyncio
import io
import logging
import zipfile
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import quote

import aiohttp

from config import SEARCH_URL, PERSON_URL, DOWNLOAD_URL, TEXT_EXTENSION, FILE_ENCODING
from errors import MalformedResponseError, PackageError
from fetcher import RateLimitedFetcher

logger = logging.getLogger(__name__)


@dataclass
class TextCandidate:
    """A text returned by a catalog search, not yet known to be new or downloadable."""
    text_id: str
    title: str = ""
    subtitle: str = ""
    author_id: Optional[str] = None
    year: Optional[int] = None


@dataclass
class PersonRecord:
    """Author metadata from the person endpoint."""
    author_id: str
    name: str
    original_name: str
    country: Optional[str] = None


# =============================================================================
# XML PARSING
# =============================================================================

def _child_text(element: ET.Element, tag: str) -> str:
    child = element.find(tag)
    if child is None or child.text is None:
        return ""
    return child.text.strip()


def _parse_year(raw: str) -> Optional[int]:
    raw = raw.strip()
    if not raw:
        return None
    digits = raw.split("-")[0].strip()
    try:
        return int(digits)
    except ValueError:
        return None


def _parse_xml(payload: bytes) -> ET.Element:
    try:
        return ET.fromstring(payload)
    except ET.ParseError as exc:
        raise MalformedResponseError(f"unparseable XML: {exc}") from exc


def parse_search_results(payload: bytes) -> List[TextCandidate]:
    """
    Parse ``<results><texts><text>...</text></texts></results>``.

    Entries without an ID are dropped. A document without a ``texts``
    element is an empty result, not an error.

    Raises:
        MalformedResponseError: if the payload is not XML.
    """
    root = _parse_xml(payload)
    texts = root.find("texts")
    if texts is None:
        return []

    candidates = []
    for node in texts.findall("text"):
        text_id = _child_text(node, "id")
        if not text_id:
            continue

        author_id = None
        author = node.find("author")
        if author is not None:
            author_id = _child_text(author, "id") or None

        candidates.append(TextCandidate(
            text_id=text_id,
            title=_child_text(node, "title"),
            subtitle=_child_text(node, "subtitle"),
            author_id=author_id,
            year=_parse_year(_child_text(node, "year")),
        ))
    return candidates


def parse_person(payload: bytes, author_id: str) -> PersonRecord:
    """
    Parse ``<results><persons><person>...</person></persons></results>``.

    Raises:
        MalformedResponseError: if the payload is not XML or holds no person
        with a name.
    """
    root = _parse_xml(payload)
    person = root.find("persons/person")
    if person is None:
        raise MalformedResponseError(f"no person in response for author {author_id}")

    name = _child_text(person, "name")
    if not name:
        raise MalformedResponseError(f"person {author_id} has no name")

    return PersonRecord(
        author_id=str(author_id),
        name=name,
        original_name=_child_text(person, "real-name") or name,
        country=_child_text(person, "country") or None,
    )


# =============================================================================
# PACKAGES
# =============================================================================

def extract_text_from_package(data: bytes) -> str:
    """
    Return the content of the first ``.txt`` member of a zip package.

    Raises:
        PackageError: if ``data`` is not a zip or holds no text file.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            for info in archive.infolist():
                if info.is_dir() or not info.filename.endswith(TEXT_EXTENSION):
                    continue
                return archive.read(info).decode(FILE_ENCODING, errors="replace")
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
        raise PackageError(f"bad package: {exc}") from exc
    raise PackageError("package holds no text file")


# =============================================================================
# CLIENT
# =============================================================================

class CatalogClient:
    """Talks to the catalog through a ``RateLimitedFetcher``."""

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        search_url: str = SEARCH_URL,
        person_url: str = PERSON_URL,
        download_url: str = DOWNLOAD_URL,
    ):
        self.fetcher = fetcher
        self.search_url = search_url
        self.person_url = person_url
        self.download_url = download_url

    async def search_texts(self, query: str) -> List[TextCandidate]:
        """Candidates for one search key; ``[]`` on any failure."""
        url = self.search_url.format(query=quote(query))
        try:
            response = await self.fetcher.fetch(url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Search for %r failed: %s", query, exc)
            return []

        if not response.ok:
            logger.debug("Search for %r returned HTTP %d", query, response.status)
            return []

        try:
            return parse_search_results(response.body)
        except MalformedResponseError as exc:
            logger.warning("Search for %r: %s", query, exc)
            return []

    async def fetch_person(self, author_id: str) -> Optional[PersonRecord]:
        """Author metadata, or ``None`` if missing, invalid or unreachable."""
        url = self.person_url.format(author_id=quote(str(author_id)))
        try:
            response = await self.fetcher.fetch(url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Author lookup %s failed: %s", author_id, exc)
            return None

        if not response.ok:
            logger.debug("Author lookup %s returned HTTP %d", author_id, response.status)
            return None

        try:
            return parse_person(response.body, author_id)
        except MalformedResponseError as exc:
            logger.warning("Author XML for ID %s is empty or invalid: %s", author_id, exc)
            return None

    async def download_package(self, text_id: str) -> Optional[bytes]:
        """Raw zip bytes for a text, or ``None`` on failure."""
        url = self.download_url.format(text_id=quote(str(text_id)))
        try:
            response = await self.fetcher.fetch(url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Download of text %s failed: %s", text_id, exc)
            return None

        if not response.ok:
            logger.debug("Download of text %s returned HTTP %d", text_id, response.status)
            return None
        return response.body
