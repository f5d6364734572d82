import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from catalog import CatalogClient, PersonRecord
from conftest import FakeResponse, make_zip, person_xml, search_xml
from config import DOWNLOAD_URL, PERSON_URL, SEARCH_URL
from crawler import CrawlRun, TextCrawler
from errors import StoreUnavailableError
from fetcher import RateLimitedFetcher
from store import StoreGateway

SEARCH_PREFIX = SEARCH_URL.split("?")[0]
PERSON_PREFIX = PERSON_URL.split("?")[0]
DOWNLOAD_PREFIX = DOWNLOAD_URL.split("{")[0]


def make_crawler(store, catalog_client, data_dir, keys, **delays):
    options = {"author_delay": 0, "save_delay": 0, "query_delay": 0}
    options.update(delays)
    return TextCrawler(store, catalog_client, data_dir=data_dir, query_keys=keys, **options)


@pytest.fixture
def vazov_catalog(fake_catalog):
    fake_catalog.searches["ааа"] = search_xml(
        {"id": "101", "title": "Под игото", "author_id": "7"},
        {"id": "102", "title": "Чичовци", "author_id": "7"},
    )
    fake_catalog.persons["7"] = person_xml("Иван Вазов", "Иван Минчов Вазов", "България")
    fake_catalog.packages["101"] = make_zip({"101.txt": "Глава първа. Гост."})
    fake_catalog.packages["102"] = make_zip({"102.txt": "Чичовци. Разказ."})
    return fake_catalog


# =============================================================================
# END TO END
# =============================================================================

@pytest.mark.asyncio
async def test_quota_of_one_saves_exactly_one_text(store, data_dir, vazov_catalog, catalog_client, catalog_session):
    crawler = make_crawler(
        store, catalog_client, data_dir, ["ааа", "ааб", "аав"],
        save_delay=60, query_delay=60,
    )

    # no pacing once the quota is met, or this would block for a minute
    stats = await asyncio.wait_for(crawler.run(quota=1), timeout=5)

    assert stats.saved == 1
    assert not stats.stopped
    saved = data_dir / "България" / "101_Под_игото!.txt"
    assert saved.read_text(encoding="utf-8") == "Глава първа. Гост."
    assert len(vazov_catalog.calls_to(catalog_session, DOWNLOAD_PREFIX)) == 1
    assert vazov_catalog.calls_to(catalog_session, SEARCH_PREFIX) == [vazov_catalog.search_url("ааа")]

    with store.session() as gateway:
        assert gateway.list_known_text_ids() == {"101"}
        assert [a.name for a in gateway.top_authors()] == ["Иван Вазов"]
        assert gateway.top_authors()[0].country_name == "България"


@pytest.mark.asyncio
async def test_second_run_downloads_nothing_new(store, data_dir, vazov_catalog, catalog_client, catalog_session):
    first = await make_crawler(store, catalog_client, data_dir, ["ааа"]).run(quota=10)
    downloads = len(vazov_catalog.calls_to(catalog_session, DOWNLOAD_PREFIX))

    second = await make_crawler(store, catalog_client, data_dir, ["ааа"]).run(quota=10)

    assert first.saved == 2
    assert second.saved == 0
    assert second.skipped_existing_file == 2
    assert len(vazov_catalog.calls_to(catalog_session, DOWNLOAD_PREFIX)) == downloads
    with store.session() as gateway:
        assert gateway.list_known_text_ids() == {"101", "102"}


@pytest.mark.asyncio
async def test_key_space_exhaustion_ends_run_below_quota(store, data_dir, vazov_catalog, catalog_client):
    stats = await make_crawler(store, catalog_client, data_dir, ["ааа", "ааб"]).run(quota=50)

    assert stats.saved == 2
    assert stats.queries == 2


# =============================================================================
# SKIPS AND FAILURES
# =============================================================================

@pytest.mark.asyncio
async def test_file_on_disk_is_skipped_even_without_store_row(store, data_dir, vazov_catalog, catalog_client, catalog_session):
    folder = data_dir / "България"
    folder.mkdir()
    (folder / "101_Под_игото!.txt").write_text("вече свален", encoding="utf-8")

    stats = await make_crawler(store, catalog_client, data_dir, ["ааа"]).run(quota=1)

    assert stats.skipped_existing_file == 1
    assert stats.saved == 1
    assert vazov_catalog.calls_to(catalog_session, DOWNLOAD_PREFIX) == [vazov_catalog.download_url("102")]
    with store.session() as gateway:
        assert gateway.list_known_text_ids() == {"102"}


@pytest.mark.asyncio
async def test_known_text_id_is_not_downloaded(store, data_dir, vazov_catalog, catalog_client, catalog_session):
    with store.session() as gateway:
        gateway.upsert_text("101", "Под игото", None)

    stats = await make_crawler(store, catalog_client, data_dir, ["ааа"]).run(quota=5)

    assert stats.skipped_known == 1
    assert vazov_catalog.calls_to(catalog_session, DOWNLOAD_PREFIX) == [vazov_catalog.download_url("102")]


@pytest.mark.asyncio
async def test_failed_download_moves_on_to_next_candidate(store, data_dir, vazov_catalog, catalog_client):
    vazov_catalog.packages["101"] = 404

    stats = await make_crawler(store, catalog_client, data_dir, ["ааа"]).run(quota=1)

    assert stats.download_failures == 1
    assert stats.saved == 1
    assert (data_dir / "България" / "102_Чичовци!.txt").is_file()
    with store.session() as gateway:
        assert gateway.list_known_text_ids() == {"102"}


@pytest.mark.asyncio
async def test_package_without_text_counts_as_unpack_failure(store, data_dir, vazov_catalog, catalog_client):
    vazov_catalog.packages["101"] = b"this is not a zip"
    vazov_catalog.packages["102"] = make_zip({"cover.jpg": "x"})

    stats = await make_crawler(store, catalog_client, data_dir, ["ааа"]).run(quota=1)

    assert stats.unpack_failures == 2
    assert stats.saved == 0
    with store.session() as gateway:
        assert gateway.list_known_text_ids() == set()


@pytest.mark.asyncio
async def test_unresolved_author_saves_text_to_unknown(store, data_dir, fake_catalog, catalog_client):
    fake_catalog.searches["ааа"] = search_xml({"id": "300", "title": "Анонимно", "author_id": "99"})
    fake_catalog.persons["99"] = "<results><persons/></results>"
    fake_catalog.packages["300"] = make_zip({"300.txt": "Без автор."})

    stats = await make_crawler(store, catalog_client, data_dir, ["ааа"]).run(quota=1)

    assert stats.saved == 1
    assert stats.authors_unresolved == 1
    assert (data_dir / "Unknown" / "300_Анонимно!.txt").is_file()
    with store.session() as gateway:
        assert gateway.list_known_text_ids() == {"300"}
        assert gateway.top_authors() == []
        assert gateway.corpus_summary().total_authors == 0


@pytest.mark.asyncio
async def test_author_looked_up_once_per_run(store, data_dir, vazov_catalog, catalog_client, catalog_session):
    stats = await make_crawler(store, catalog_client, data_dir, ["ааа"]).run(quota=2)

    assert stats.saved == 2
    assert len(vazov_catalog.calls_to(catalog_session, PERSON_PREFIX)) == 1
    assert stats.authors_resolved == 1


@pytest.mark.asyncio
async def test_search_failure_skips_only_that_key(store, data_dir, vazov_catalog, catalog_session):
    broken_url = vazov_catalog.search_url("ббб")

    def handler(url):
        if url == broken_url:
            return FakeResponse(500)
        return vazov_catalog.handle(url)

    catalog_session.handler = handler
    client = CatalogClient(RateLimitedFetcher(catalog_session, max_retries=0))

    stats = await make_crawler(store, client, data_dir, ["ббб", "ааа"]).run(quota=2)

    assert stats.queries == 2
    assert stats.saved == 2


# =============================================================================
# RUN CONTROL
# =============================================================================

@pytest.mark.asyncio
async def test_baseline_load_failure_aborts_run(store, data_dir, vazov_catalog, catalog_client, catalog_session, monkeypatch):
    def broken(self):
        raise OperationalError("SELECT text_id FROM texts", {}, Exception("boom"))

    monkeypatch.setattr(StoreGateway, "list_known_text_ids", broken)

    with pytest.raises(StoreUnavailableError):
        await make_crawler(store, catalog_client, data_dir, ["ааа"]).run(quota=1)

    assert catalog_session.calls == []


@pytest.mark.asyncio
async def test_stop_ends_run_at_next_boundary(store, data_dir, vazov_catalog, catalog_client, catalog_session):
    crawler = make_crawler(store, catalog_client, data_dir, ["ааа", "ааб"])
    vazov_catalog.on_search = lambda url: crawler.stop()

    stats = await crawler.run(quota=5)

    assert stats.stopped
    assert stats.saved == 0
    assert stats.queries == 1
    assert vazov_catalog.calls_to(catalog_session, DOWNLOAD_PREFIX) == []


@pytest.mark.asyncio
async def test_stop_interrupts_pacing(store, data_dir, vazov_catalog, catalog_client):
    crawler = make_crawler(store, catalog_client, data_dir, ["ааа", "ааб"], save_delay=60)

    async def stop_after_first_save():
        while crawler.stats.saved < 1:
            await asyncio.sleep(0.01)
        crawler.stop()

    _, stats = await asyncio.wait_for(asyncio.gather(stop_after_first_save(), crawler.run(quota=5)), timeout=5)

    assert stats.stopped
    assert stats.saved == 1


# =============================================================================
# PACING
# =============================================================================

AUTHOR_PAUSE, SAVE_PAUSE, QUERY_PAUSE = 0.5, 1.5, 1.0


def paced_crawler(store, catalog_client, data_dir, keys, pauses, monkeypatch):
    crawler = make_crawler(
        store, catalog_client, data_dir, keys,
        author_delay=AUTHOR_PAUSE, save_delay=SAVE_PAUSE, query_delay=QUERY_PAUSE,
    )
    monkeypatch.setattr(crawler, "_pause", pauses)
    return crawler


@pytest.mark.asyncio
async def test_pauses_follow_saves_and_keys_but_not_failures(
    store, data_dir, vazov_catalog, catalog_client, recording_sleep, monkeypatch,
):
    vazov_catalog.packages["101"] = 404
    crawler = paced_crawler(store, catalog_client, data_dir, ["ааа", "ааб"], recording_sleep, monkeypatch)

    stats = await crawler.run(quota=5)

    assert stats.download_failures == 1
    assert stats.saved == 1
    # lookup for 101, nothing for its failed download, save of 102, then one per key
    assert recording_sleep.delays == [AUTHOR_PAUSE, SAVE_PAUSE, QUERY_PAUSE, QUERY_PAUSE]


@pytest.mark.asyncio
async def test_every_author_lookup_is_followed_by_a_pause(
    store, data_dir, fake_catalog, catalog_client, recording_sleep, monkeypatch,
):
    fake_catalog.searches["ааа"] = search_xml(
        {"id": "1", "title": "Първи", "author_id": "7"},
        {"id": "2", "title": "Втори", "author_id": "8"},
        {"id": "3", "title": "Трети", "author_id": "7"},
    )
    fake_catalog.persons["7"] = person_xml("Иван Вазов", country="България")
    fake_catalog.persons["8"] = "<results><persons/></results>"
    for text_id in ("1", "2", "3"):
        fake_catalog.packages[text_id] = make_zip({f"{text_id}.txt": "Текст."})
    crawler = paced_crawler(store, catalog_client, data_dir, ["ааа"], recording_sleep, monkeypatch)

    stats = await crawler.run(quota=5)

    assert stats.saved == 3
    assert stats.authors_unresolved == 1
    # text 3 reuses the cached author 7, so no lookup and no author pause
    assert recording_sleep.delays == [
        AUTHOR_PAUSE, SAVE_PAUSE,
        AUTHOR_PAUSE, SAVE_PAUSE,
        SAVE_PAUSE,
        QUERY_PAUSE,
    ]


class SlowPersonCatalog:
    """Person lookups that take a while and record how they interleave."""

    def __init__(self):
        self.events = []
        self.active = 0
        self.max_active = 0

    async def fetch_person(self, author_id):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.events.append(("start", author_id))
        await asyncio.sleep(0.01)
        self.events.append(("end", author_id))
        self.active -= 1
        return PersonRecord(author_id, f"Автор {author_id}", f"Автор {author_id}", "България")


@pytest.mark.asyncio
async def test_concurrent_author_lookups_are_serialized(store, data_dir, monkeypatch):
    catalog = SlowPersonCatalog()
    crawler = TextCrawler(store, catalog, data_dir=data_dir, query_keys=[])

    async def pause(seconds):
        catalog.events.append(("pause", seconds))
        await asyncio.sleep(0)

    monkeypatch.setattr(crawler, "_pause", pause)
    run = CrawlRun(quota=1)

    with store.session() as gateway:
        first, second = await asyncio.gather(
            crawler.resolve_author(gateway, run, "1"),
            crawler.resolve_author(gateway, run, "2"),
        )

    assert (first.author_id, second.author_id) == ("1", "2")
    assert catalog.max_active == 1
    # the pause runs while the permit is still held
    assert catalog.events == [
        ("start", "1"), ("end", "1"), ("pause", crawler.author_delay),
        ("start", "2"), ("end", "2"), ("pause", crawler.author_delay),
    ]
    assert set(run.author_cache) == {"1", "2"}
