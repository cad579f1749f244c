"""Tests of the fetcher, files are served by a local HTTP server.
"""

from pathlib import Path
import hashlib
import json
import pytest

from mcclient.standard import Context
from mcclient.resolve import VersionProfile, LibraryEntry, LibraryNotFoundError
from mcclient.download import DownloadEntry, DownloadResultError, SerialDownloader, ThreadedDownloader
from mcclient.fetch import Fetcher, FetchError, AssetsIndex, ResourceMissingError, \
    VerificationFailedError, DownloadStartEvent, DownloadCompleteEvent, AssetsResolveEvent, \
    assets_index_file, read_assets_index, logging_config
from mcclient.events import EventChannel
from mcclient.http import RetryPolicy
from mcclient.util import LibrarySpecifier

from typing import List, Optional


NO_WAIT = RetryPolicy(3, 0.0)


def make_profile(context: Context, *,
    libraries: Optional[List[LibraryEntry]] = None,
    assets_index_version: Optional[str] = None,
    metadata: Optional[dict] = None,
    client_download: Optional[DownloadEntry] = None
) -> VersionProfile:
    jar_path = context.versions_dir / "test" / "test.jar"
    return VersionProfile("test", None, "Main", libraries or [], metadata or {}, jar_path,
        client_download, assets_index_version, ["test"])


def install_jar(profile: VersionProfile, size: int = 16) -> None:
    profile.jar_path.parent.mkdir(parents=True, exist_ok=True)
    profile.jar_path.write_bytes(b"j" * size)


def serve_assets(context: Context, file_server, count: int, missing: List[int], **index) -> AssetsIndex:
    """Install an assets index of the given count of objects and serve them, except the
    missing ones.
    """

    objects = {}
    for i in range(count):
        data = f"asset number {i}".encode()
        asset_hash = hashlib.sha1(data).hexdigest()
        objects[f"minecraft/sounds/sound{i}.ogg"] = {"hash": asset_hash, "size": len(data)}
        if i not in missing:
            file_server.add_file(f"resources/{asset_hash[:2]}/{asset_hash}", data)

    file = assets_index_file(context, "test-index")
    file.parent.mkdir(parents=True, exist_ok=True)
    file.write_text(json.dumps({"objects": objects, **index}))

    assets_index = read_assets_index(context, "test-index")
    assert assets_index is not None
    return assets_index


def test_fetch_assets(tmp_context: Context, file_server):

    serve_assets(tmp_context, file_server, 10, [7])

    events = EventChannel()
    received = []
    events.subscribe(object, received.append)

    profile = make_profile(tmp_context, assets_index_version="test-index")
    install_jar(profile)

    fetcher = Fetcher(tmp_context, SerialDownloader(retry=NO_WAIT), events=events, resources_url=f"{file_server.url}/resources/")
    report = fetcher.fetch_all(profile)

    assert report.success_count == 9
    assert report.skipped_count == 0
    assert not report.success
    assert len(report.errors) == 1
    assert report.errors[0].name == "minecraft/sounds/sound7.ogg"
    assert report.errors[0].code == DownloadResultError.NOT_FOUND

    assets_resolve = [e for e in received if isinstance(e, AssetsResolveEvent)]
    assert len(assets_resolve) == 1 and assets_resolve[0].count == 10
    assert [e.entries_count for e in received if isinstance(e, DownloadStartEvent)] == [10]
    assert [e.report for e in received if isinstance(e, DownloadCompleteEvent)] == [report]

    # Installed files are skipped the next time.
    report = fetcher.fetch_all(profile)
    assert report.success_count == 0
    assert report.skipped_count == 9
    assert len(report.errors) == 1


def test_fetch_threaded(tmp_context: Context, file_server):

    serve_assets(tmp_context, file_server, 20, [])

    profile = make_profile(tmp_context, assets_index_version="test-index")
    install_jar(profile)

    fetcher = Fetcher(tmp_context, ThreadedDownloader(4, retry=NO_WAIT), resources_url=f"{file_server.url}/resources/")
    report = fetcher.fetch_all(profile)

    assert report.success
    assert report.success_count == 20


def test_fetch_jar_and_libraries(tmp_context: Context, file_server):

    jar_data = b"client jar" * 10
    file_server.add_file("client.jar", jar_data)
    file_server.add_file("maven/com/example/lib/1.0/lib-1.0.jar", b"library")

    lib_spec = LibrarySpecifier.from_str("com.example:lib:1.0")
    lib_path = tmp_context.libraries_dir / lib_spec.file_path()
    lib = LibraryEntry(lib_spec, lib_path, False,
        download=DownloadEntry(f"{file_server.url}/maven/{lib_spec.file_path()}", lib_path, size=7, name=str(lib_spec)))

    local_spec = LibrarySpecifier.from_str("com.example:local:1.0")
    local = LibraryEntry(local_spec, tmp_context.libraries_dir / local_spec.file_path(), False)

    jar_path = tmp_context.versions_dir / "test" / "test.jar"
    client_download = DownloadEntry(f"{file_server.url}/client.jar", jar_path, size=len(jar_data), name="test.jar")
    profile = make_profile(tmp_context, libraries=[lib, local], client_download=client_download)

    fetcher = Fetcher(tmp_context, SerialDownloader(retry=NO_WAIT))
    report = fetcher.fetch_all(profile)

    assert report.success_count == 2
    assert jar_path.read_bytes() == jar_data
    assert lib_path.read_bytes() == b"library"
    assert [(e.name, e.code) for e in report.errors] == [("com.example:local:1.0", FetchError.RESOURCE_MISSING)]


def test_fetch_missing_jar(tmp_context: Context):
    profile = make_profile(tmp_context)
    report = Fetcher(tmp_context, SerialDownloader(retry=NO_WAIT)).fetch_all(profile)
    assert [(e.name, e.code) for e in report.errors] == [("test", FetchError.RESOURCE_MISSING)]


def test_fetch_assets_index(tmp_context: Context, file_server):

    data = b"legacy asset"
    asset_hash = hashlib.sha1(data).hexdigest()
    file_server.add_file(f"resources/{asset_hash[:2]}/{asset_hash}", data)
    file_server.add_file("indexes/legacy.json", json.dumps({
        "virtual": True,
        "objects": {"icons/icon.png": {"hash": asset_hash, "size": len(data)}},
    }).encode())

    profile = make_profile(tmp_context, assets_index_version="legacy", metadata={
        "assetIndex": {"id": "legacy", "url": f"{file_server.url}/indexes/legacy.json"},
    })
    install_jar(profile)

    fetcher = Fetcher(tmp_context, SerialDownloader(retry=NO_WAIT), retry=NO_WAIT, resources_url=f"{file_server.url}/resources/")
    report = fetcher.fetch_all(profile)

    assert report.success
    assert report.success_count == 2
    assert assets_index_file(tmp_context, "legacy").is_file()

    # Virtual assets are copied to their legacy directory.
    assert (tmp_context.assets_dir / "virtual" / "legacy" / "icons" / "icon.png").read_bytes() == data


def test_fetch_assets_index_not_found(tmp_context: Context, file_server):

    profile = make_profile(tmp_context, assets_index_version="missing", metadata={
        "assetIndex": {"id": "missing", "url": f"{file_server.url}/indexes/missing.json"},
    })
    install_jar(profile)

    report = Fetcher(tmp_context, SerialDownloader(retry=NO_WAIT), retry=NO_WAIT).fetch_all(profile)
    assert [(e.name, e.code) for e in report.errors] == [("assets index missing", DownloadResultError.NOT_FOUND)]


def test_fetch_assets_index_write_failed(tmp_context: Context, file_server):

    data = b"sound"
    asset_hash = hashlib.sha1(data).hexdigest()
    file_server.add_file(f"resources/{asset_hash[:2]}/{asset_hash}", data)
    file_server.add_file("indexes/test-index.json", json.dumps({
        "objects": {"sounds/sound.ogg": {"hash": asset_hash, "size": len(data)}},
    }).encode())

    profile = make_profile(tmp_context, assets_index_version="test-index", metadata={
        "assetIndex": {"id": "test-index", "url": f"{file_server.url}/indexes/test-index.json"},
    })
    install_jar(profile)

    # The index can't be saved, its assets are still fetched.
    tmp_context.assets_dir.mkdir(parents=True)
    tmp_context.assets_dir.joinpath("indexes").write_bytes(b"")

    fetcher = Fetcher(tmp_context, SerialDownloader(retry=NO_WAIT), retry=NO_WAIT, resources_url=f"{file_server.url}/resources/")
    report = fetcher.fetch_all(profile)

    assert [(e.name, e.code) for e in report.errors] == [("assets index test-index", FetchError.WRITE_FAILED)]
    assert report.success_count == 1
    assert tmp_context.assets_dir.joinpath("objects", asset_hash[:2], asset_hash).read_bytes() == data


def test_logging_config(tmp_context: Context):

    profile = make_profile(tmp_context, metadata={"logging": {"client": {
        "argument": "-Dlog4j.configurationFile=${path}",
        "file": {"id": "client-1.12.xml", "sha1": "bd65e7d2e3c237be76cfbef4c2405033d7f91521", "size": 888, "url": "https://test/client-1.12.xml"},
        "type": "log4j2-xml",
    }}})

    info = logging_config(tmp_context, profile)
    assert info is not None
    argument, entry = info
    assert argument == "-Dlog4j.configurationFile=${path}"
    assert entry.dst == tmp_context.assets_dir / "log_configs" / "client-1.12.xml"
    assert entry.size == 888

    assert logging_config(tmp_context, make_profile(tmp_context)) is None

    with pytest.raises(ValueError):
        logging_config(tmp_context, make_profile(tmp_context, metadata={"logging": {"client": {"argument": 1}}}))


def test_verify(tmp_context: Context):

    lib_spec = LibrarySpecifier.from_str("com.example:lib:1.0")
    lib_path = tmp_context.libraries_dir / lib_spec.file_path()
    profile = make_profile(tmp_context, libraries=[LibraryEntry(lib_spec, lib_path, False)])
    fetcher = Fetcher(tmp_context, min_jar_size=100)

    with pytest.raises(ResourceMissingError):
        fetcher.verify(profile)

    install_jar(profile, 10)
    with pytest.raises(VerificationFailedError) as error:
        fetcher.verify(profile)
    assert error.value.size == 10

    install_jar(profile, 100)
    with pytest.raises(LibraryNotFoundError) as error:
        fetcher.verify(profile)
    assert error.value.spec == lib_spec

    lib_path.parent.mkdir(parents=True)
    lib_path.write_bytes(b"library")
    fetcher.verify(profile)


def test_verify_small_jar_expected(tmp_context: Context):

    # A small JAR is accepted if it has the expected size.
    jar_path = tmp_context.versions_dir / "test" / "test.jar"
    profile = make_profile(tmp_context, client_download=DownloadEntry("https://test/client.jar", jar_path, size=10))
    install_jar(profile, 10)
    Fetcher(tmp_context).verify(profile)


def test_assets_index_legacy_dir(tmp_context: Context):

    index = AssetsIndex.from_dict("pre-1.6", {"map_to_resources": True, "objects": {}})
    assert index.legacy_dir(tmp_context) == tmp_context.work_dir / "resources"

    index = AssetsIndex.from_dict("legacy", {"virtual": True, "objects": {}})
    assert index.legacy_dir(tmp_context) == tmp_context.assets_dir / "virtual" / "legacy"

    index = AssetsIndex.from_dict("5", {"objects": {}})
    assert index.legacy_dir(tmp_context) is None

    with pytest.raises(ValueError):
        AssetsIndex.from_dict("5", {"objects": {"a": {"hash": 1, "size": 1}}})
