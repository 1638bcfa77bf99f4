"""Unit tests for the lock file: persistence, mutation and batch download."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
import toml

from conftest import ABCDEF_SHA256, FakeFetcher

from lockfetch.cache import CacheClient, object_url
from lockfetch.config import LockFetchConfig
from lockfetch.exceptions import (
    AggregateDownloadError,
    CacheError,
    InvalidPermissionError,
    LockFetchError,
    LockNotFoundError,
    LockParseError,
    MissingCredentialError,
    NothingToDownloadError,
    ResourceAlreadyPresentError,
    ResourceNotFoundError,
)
from lockfetch.lock import Lock
from lockfetch.resource import Resource

URL = "https://example.com/a.txt"
MIRROR = "https://mirror.example.com/a.txt"
CACHE = "https://cache.example.com/repo"


def make_lock(path: Path, fetcher, cache=None, resources=None, **config) -> Lock:
    return Lock(
        str(path),
        resources,
        fetcher=fetcher,
        config=LockFetchConfig(**config),
        cache=cache or CacheClient(fetcher),
    )


# ---------------------------------------------------------------------------
# Test: load / save
# ---------------------------------------------------------------------------


class TestLoadSave:
    def test_missing_file(self, lock_path: Path, fetcher: FakeFetcher):
        with pytest.raises(LockNotFoundError, match="does not exist"):
            Lock.load(str(lock_path), fetcher=fetcher)

    def test_missing_file_created_on_demand(
        self, lock_path: Path, fetcher: FakeFetcher
    ):
        lock = Lock.load(str(lock_path), create_if_missing=True, fetcher=fetcher)
        assert len(lock) == 0
        assert not lock_path.exists()

    def test_invalid_toml(self, lock_path: Path, fetcher: FakeFetcher):
        lock_path.write_text("[[Resource]\nUrls = ")
        with pytest.raises(LockParseError):
            Lock.load(str(lock_path), fetcher=fetcher)

    def test_entry_without_integrity(self, lock_path: Path, fetcher: FakeFetcher):
        lock_path.write_text('[[Resource]]\nUrls = ["https://example.com/a.txt"]\n')
        with pytest.raises(LockParseError, match="Integrity"):
            Lock.load(str(lock_path), fetcher=fetcher)

    def test_entry_with_empty_urls(self, lock_path: Path, fetcher: FakeFetcher):
        lock_path.write_text(f'[[Resource]]\nUrls = []\nIntegrity = "{ABCDEF_SHA256}"\n')
        with pytest.raises(LockParseError, match="empty url list"):
            Lock.load(str(lock_path), fetcher=fetcher)

    def test_dynamic_entry_without_integrity(
        self, lock_path: Path, fetcher: FakeFetcher
    ):
        lock_path.write_text(f'[[Resource]]\nUrls = ["{URL}"]\nDynamic = true\n')
        lock = Lock.load(str(lock_path), fetcher=fetcher)
        assert lock.resources[0] == Resource(urls=[URL], integrity="", dynamic=True)

        lock.save()
        assert "Integrity" not in toml.load(str(lock_path))["Resource"][0]

    @pytest.mark.parametrize(
        "body",
        [
            f'Urls = "{URL}"\nIntegrity = "{ABCDEF_SHA256}"\n',
            f'Urls = ["{URL}"]\nIntegrity = "{ABCDEF_SHA256}"\nTags = "x"\n',
        ],
        ids=["urls-string", "tags-string"],
    )
    def test_non_list_fields_rejected(
        self, lock_path: Path, fetcher: FakeFetcher, body: str
    ):
        lock_path.write_text("[[Resource]]\n" + body)
        with pytest.raises(LockParseError, match="must be a list"):
            Lock.load(str(lock_path), fetcher=fetcher)

    def test_save_and_reload_preserves_order(
        self, lock_path: Path, fetcher: FakeFetcher
    ):
        resources = [
            Resource(urls=[URL], integrity=ABCDEF_SHA256, tags=["x"]),
            Resource(
                urls=["https://example.com/b.txt"],
                integrity=ABCDEF_SHA256,
                filename="b.bin",
                cache_uri=CACHE,
                dynamic=True,
            ),
        ]
        make_lock(lock_path, fetcher, resources=resources).save()

        data = toml.load(str(lock_path))
        assert data["Resource"][0] == {
            "Urls": [URL],
            "Integrity": ABCDEF_SHA256,
            "Tags": ["x"],
        }
        reloaded = Lock.load(str(lock_path), fetcher=fetcher)
        assert list(reloaded.resources) == resources

    def test_resources_is_read_only(self, lock_path: Path, fetcher: FakeFetcher):
        lock = make_lock(lock_path, fetcher)
        assert lock.resources == ()


# ---------------------------------------------------------------------------
# Test: add / delete / update
# ---------------------------------------------------------------------------


class TestAddResource:
    def test_add(self, lock_path: Path, fetcher: FakeFetcher):
        lock = make_lock(lock_path, fetcher)
        resource = asyncio.run(lock.add_resource([URL, MIRROR], tags=["t"]))

        assert resource.integrity == ABCDEF_SHA256
        assert lock.contains(URL) and lock.contains(MIRROR)
        assert fetcher.calls == [("GET", URL, None)]

    @pytest.mark.parametrize("urls", [[URL], [MIRROR], ["https://new/a", URL]])
    def test_duplicate_url_rejected(
        self, lock_path: Path, fetcher: FakeFetcher, urls
    ):
        lock = make_lock(
            lock_path,
            fetcher,
            resources=[Resource(urls=[URL, MIRROR], integrity=ABCDEF_SHA256)],
        )
        with pytest.raises(ResourceAlreadyPresentError, match="already present"):
            asyncio.run(lock.add_resource(urls))
        assert fetcher.calls == []
        assert len(lock) == 1

    def test_duplicate_within_one_add(self, lock_path: Path, fetcher: FakeFetcher):
        lock = make_lock(lock_path, fetcher)
        with pytest.raises(ResourceAlreadyPresentError):
            asyncio.run(lock.add_resource([URL, URL]))

    def test_cache_without_token_fails_before_fetch(
        self, lock_path: Path, fetcher: FakeFetcher
    ):
        lock = make_lock(lock_path, fetcher)
        with pytest.raises(MissingCredentialError):
            asyncio.run(lock.add_resource([URL], cache_uri=CACHE))
        assert fetcher.calls == []
        assert len(lock) == 0

    def test_cache_seeding_failure_fails_add(
        self, lock_path: Path, fetcher: FakeFetcher, cache: CacheClient
    ):
        fetcher.fail_writes = True
        lock = make_lock(lock_path, fetcher, cache=cache)
        with pytest.raises(CacheError):
            asyncio.run(lock.add_resource([URL], cache_uri=CACHE))
        assert len(lock) == 0

    def test_cache_seeded_once(
        self, lock_path: Path, fetcher: FakeFetcher, cache: CacheClient
    ):
        lock = make_lock(lock_path, fetcher, cache=cache)
        asyncio.run(lock.add_resource([URL], cache_uri=CACHE))
        assert len(fetcher.calls_for("PUT")) == 1


class TestDeleteResource:
    def test_removes_every_resource_with_url(
        self, lock_path: Path, fetcher: FakeFetcher
    ):
        lock = make_lock(
            lock_path,
            fetcher,
            resources=[
                Resource(urls=[URL], integrity=ABCDEF_SHA256),
                Resource(urls=["https://other/b"], integrity=ABCDEF_SHA256),
            ],
        )
        assert asyncio.run(lock.delete_resource(URL)) == 1
        assert [r.urls for r in lock.resources] == [["https://other/b"]]

    def test_unknown_url_is_noop(self, lock_path: Path, fetcher: FakeFetcher):
        lock = make_lock(lock_path, fetcher)
        assert asyncio.run(lock.delete_resource(URL)) == 0

    def test_evicts_cache_object(
        self, lock_path: Path, fetcher: FakeFetcher, cache: CacheClient
    ):
        lock = make_lock(
            lock_path,
            fetcher,
            cache=cache,
            resources=[
                Resource(urls=[URL], integrity=ABCDEF_SHA256, cache_uri=CACHE)
            ],
        )
        asyncio.run(lock.delete_resource(URL))
        assert fetcher.calls == [
            ("DELETE", object_url(CACHE, ABCDEF_SHA256), "secret")
        ]

    def test_eviction_failure_is_only_a_warning(
        self, lock_path: Path, fetcher: FakeFetcher
    ):
        lock = make_lock(
            lock_path,
            fetcher,
            resources=[
                Resource(urls=[URL], integrity=ABCDEF_SHA256, cache_uri=CACHE)
            ],
        )
        assert asyncio.run(lock.delete_resource(URL)) == 1
        assert len(lock) == 0


class TestUpdateResource:
    def test_not_found(self, lock_path: Path, fetcher: FakeFetcher):
        lock = make_lock(lock_path, fetcher)
        with pytest.raises(ResourceNotFoundError):
            asyncio.run(lock.update_resource(URL))

    def test_recomputes_and_saves(self, lock_path: Path, fetcher: FakeFetcher):
        old = Resource(
            urls=[URL, MIRROR],
            integrity="sha256-stale",
            tags=["t"],
            filename="f.txt",
            dynamic=True,
        )
        lock = make_lock(lock_path, fetcher, resources=[old])

        updated = asyncio.run(lock.update_resource(MIRROR))
        assert updated.integrity == ABCDEF_SHA256
        assert updated.urls == old.urls
        assert updated.tags == ["t"]
        assert updated.filename == "f.txt"
        assert updated.dynamic is True
        assert fetcher.calls == [("GET", URL, None)]

        on_disk = Lock.load(str(lock_path), fetcher=fetcher)
        assert on_disk.resources[0].integrity == ABCDEF_SHA256

    def test_keeps_algorithm(self, lock_path: Path, fetcher: FakeFetcher):
        lock = make_lock(
            lock_path,
            fetcher,
            resources=[Resource(urls=[URL], integrity="sha512-stale")],
        )
        assert asyncio.run(lock.update_resource(URL)).integrity.startswith("sha512-")

    def test_changed_content_moves_cache_object(
        self, lock_path: Path, fetcher: FakeFetcher, cache: CacheClient
    ):
        lock = make_lock(
            lock_path,
            fetcher,
            cache=cache,
            resources=[Resource(urls=[URL], integrity="sha256-stale", cache_uri=CACHE)],
        )
        asyncio.run(lock.update_resource(URL))
        assert fetcher.calls_for("PUT") == [
            ("PUT", object_url(CACHE, ABCDEF_SHA256), "secret")
        ]
        assert fetcher.calls_for("DELETE") == [
            ("DELETE", object_url(CACHE, "sha256-stale"), "secret")
        ]


# ---------------------------------------------------------------------------
# Test: filter and batch download
# ---------------------------------------------------------------------------


def tagged_lock(lock_path: Path, fetcher: FakeFetcher) -> Lock:
    resources = []
    for name, tags in [("a", ["x", "y"]), ("b", ["x"]), ("c", ["y"]), ("d", [])]:
        url = f"https://example.com/{name}.txt"
        fetcher.contents[url] = b"abcdef"
        resources.append(Resource(urls=[url], integrity=ABCDEF_SHA256, tags=tags))
    return make_lock(lock_path, fetcher, resources=resources)


class TestFilterResources:
    @pytest.mark.parametrize(
        "tags, notags, expected",
        [
            ([], [], ["a", "b", "c", "d"]),
            (["x"], [], ["a", "b"]),
            (["x", "y"], [], ["a"]),
            ([], ["y"], ["b", "d"]),
            (["x"], ["y"], ["b"]),
            (["z"], [], []),
        ],
    )
    def test_semantics(self, lock_path, fetcher, tags, notags, expected):
        lock = tagged_lock(lock_path, fetcher)
        names = [r.local_name[0] for r in lock.filter_resources(tags, notags)]
        assert names == expected


class TestLockDownload:
    def test_downloads_filtered_set(self, lock_path, fetcher, download_dir: Path):
        lock = tagged_lock(lock_path, fetcher)
        results = asyncio.run(lock.download(str(download_dir), tags=["x"]))

        assert [r.ok for r in results] == [True, True]
        assert sorted(p.name for p in download_dir.iterdir()) == ["a.txt", "b.txt"]

    def test_second_run_does_no_fetches(self, lock_path, fetcher, download_dir: Path):
        lock = tagged_lock(lock_path, fetcher)
        asyncio.run(lock.download(str(download_dir)))
        fetcher.calls.clear()

        asyncio.run(lock.download(str(download_dir)))
        assert fetcher.calls == []

    def test_nothing_to_download(self, lock_path, fetcher, download_dir: Path):
        lock = tagged_lock(lock_path, fetcher)
        with pytest.raises(NothingToDownloadError):
            asyncio.run(lock.download(str(download_dir), tags=["z"]))

    def test_invalid_perm_checked_first(self, lock_path, fetcher, tmp_path: Path):
        lock = tagged_lock(lock_path, fetcher)
        with pytest.raises(InvalidPermissionError):
            asyncio.run(lock.download(str(tmp_path / "missing"), perm="abc"))
        assert fetcher.calls == []

    def test_directory_must_exist(self, lock_path, fetcher, tmp_path: Path):
        lock = tagged_lock(lock_path, fetcher)
        with pytest.raises(LockFetchError, match="is not a directory"):
            asyncio.run(lock.download(str(tmp_path / "missing")))

    def test_partial_failure_is_aggregated(
        self, lock_path, fetcher, download_dir: Path
    ):
        resources = []
        for i in range(5):
            url = f"https://example.com/{i}.txt"
            if i not in (1, 3):
                fetcher.contents[url] = b"abcdef"
            resources.append(Resource(urls=[url], integrity=ABCDEF_SHA256))
        lock = make_lock(lock_path, fetcher, resources=resources)

        with pytest.raises(AggregateDownloadError) as exc_info:
            asyncio.run(lock.download(str(download_dir)))

        err = exc_info.value
        assert len(err.errors) == 2
        lines = err.message.splitlines()[1:]
        assert "https://example.com/1.txt" in lines[0]
        assert "https://example.com/3.txt" in lines[1]
        assert sorted(p.name for p in download_dir.iterdir()) == [
            "0.txt",
            "2.txt",
            "4.txt",
        ]

    def test_os_error_names_the_resource(self, lock_path, download_dir: Path):
        class DeniedFetcher(FakeFetcher):
            async def fetch(self, url, dest, token=None):
                raise PermissionError(13, "Permission denied")

        lock = make_lock(
            lock_path,
            DeniedFetcher(),
            resources=[Resource(urls=[URL], integrity=ABCDEF_SHA256)],
        )

        with pytest.raises(AggregateDownloadError) as exc_info:
            asyncio.run(lock.download(str(download_dir)))

        line = exc_info.value.message.splitlines()[1]
        assert line.startswith(f"{URL}: ")
        assert "Permission denied" in line

    def test_dynamic_without_integrity_downloads(
        self, lock_path, fetcher, download_dir: Path
    ):
        lock = make_lock(
            lock_path,
            fetcher,
            resources=[Resource(urls=[URL], integrity="", dynamic=True)],
        )
        asyncio.run(lock.download(str(download_dir)))
        assert (download_dir / "a.txt").read_bytes() == b"abcdef"

    def test_lock_not_mutated_by_download(
        self, lock_path, fetcher, download_dir: Path
    ):
        lock = tagged_lock(lock_path, fetcher)
        before = list(lock.resources)
        asyncio.run(lock.download(str(download_dir)))
        assert list(lock.resources) == before
        assert not lock_path.exists()
