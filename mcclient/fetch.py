"""Fetching of everything a resolved profile needs to run: the game's JAR, libraries,
assets and the logging configuration. Every file is downloaded in a single batch and
failed files are reported without aborting the others.
"""

from json import JSONDecodeError
from pathlib import Path
import logging
import shutil
import json

from .download import DownloadList, DownloadEntry, Downloader, ThreadedDownloader, \
    DownloadResultProgress, DownloadResultError
from .standard import Context, RESOURCES_URL, parse_download_entry
from .resolve import VersionProfile, LibraryNotFoundError
from .events import EventChannel, publish
from .http import http_request, HttpError, RetryPolicy

from typing import Optional, Dict, List, Tuple, Any


logger = logging.getLogger(__name__)


# A client JAR smaller than this is most probably a broken download.
MIN_CLIENT_JAR_SIZE = 1024 * 1024


class FetchError:
    """A file that could not be fetched, the code is one of `DownloadResultError` codes,
    `RESOURCE_MISSING` when there is no way to get the file or `WRITE_FAILED` when it
    could not be written to the installation.
    """

    RESOURCE_MISSING = "resource_missing"
    WRITE_FAILED = "write_failed"

    __slots__ = "name", "path", "code", "origin"

    def __init__(self, name: str, path: Optional[Path], code: str, origin: Optional[Exception] = None) -> None:
        self.name = name
        self.path = path
        self.code = code
        self.origin = origin

    def __repr__(self) -> str:
        return f"<FetchError {self.name}: {self.code}>"


class FetchReport:
    """Report of a fetch, successfully downloaded files are counted in `success_count`
    and already installed files in `skipped_count`.
    """

    def __init__(self) -> None:
        self.success_count = 0
        self.skipped_count = 0
        self.errors: List[FetchError] = []

    @property
    def success(self) -> bool:
        return not len(self.errors)

    def __repr__(self) -> str:
        return f"<FetchReport success: {self.success_count}, skipped: {self.skipped_count}, errors: {len(self.errors)}>"


class AssetsIndex:
    """An assets index loaded from the installation, with objects mapped to their file.
    """

    __slots__ = "version", "objects", "virtual", "map_to_resources"

    def __init__(self, version: str, objects: Dict[str, Tuple[str, int]], virtual: bool, map_to_resources: bool) -> None:
        self.version = version
        self.objects = objects
        self.virtual = virtual
        self.map_to_resources = map_to_resources

    @classmethod
    def from_dict(cls, version: str, data: Any) -> "AssetsIndex":

        if not isinstance(data, dict):
            raise ValueError("assets index: / must be an object")

        map_to_resources = data.get("map_to_resources", False)  # For version <= 13w23b
        virtual = data.get("virtual", False)  # For 13w23b < version <= 13w48b (1.7.2)

        if not isinstance(map_to_resources, bool):
            raise ValueError("assets index: /map_to_resources must be a boolean")
        if not isinstance(virtual, bool):
            raise ValueError("assets index: /virtual must be a boolean")

        assets_objects = data.get("objects")
        if not isinstance(assets_objects, dict):
            raise ValueError("assets index: /objects must be an object")

        objects = {}
        for asset_id, asset_obj in assets_objects.items():

            if not isinstance(asset_obj, dict):
                raise ValueError(f"assets index: /objects/{asset_id} must be an object")

            asset_hash = asset_obj.get("hash")
            if not isinstance(asset_hash, str):
                raise ValueError(f"assets index: /objects/{asset_id}/hash must be a string")

            asset_size = asset_obj.get("size")
            if not isinstance(asset_size, int):
                raise ValueError(f"assets index: /objects/{asset_id}/size must be an integer")

            objects[asset_id] = (asset_hash, asset_size)

        return cls(version, objects, virtual, map_to_resources)

    def object_file(self, context: Context, asset_id: str) -> Path:
        asset_hash, _size = self.objects[asset_id]
        return context.assets_dir.joinpath("objects", asset_hash[:2], asset_hash)

    def legacy_dir(self, context: Context) -> Optional[Path]:
        """Return the directory where assets are copied for legacy versions, if relevant.
        """
        if self.map_to_resources:
            return context.work_dir / "resources"
        elif self.virtual:
            return context.assets_dir.joinpath("virtual", self.version)
        return None


def assets_index_file(context: Context, version: str) -> Path:
    return context.assets_dir / "indexes" / f"{version}.json"


def read_assets_index(context: Context, version: str) -> Optional[AssetsIndex]:
    """Read an assets index from the installation, none if missing or unreadable.
    """
    try:
        with assets_index_file(context, version).open("rb") as fp:
            data = json.load(fp)
    except (OSError, JSONDecodeError):
        return None
    return AssetsIndex.from_dict(version, data)


def logging_config(context: Context, profile: VersionProfile) -> Optional[Tuple[str, DownloadEntry]]:
    """Return the logger argument template and the download entry of its configuration
    file, if the profile has one.
    """

    logging_info = profile.metadata.get("logging")
    if logging_info is None:
        return None

    if not isinstance(logging_info, dict):
        raise ValueError("metadata: /logging must be an object")

    client_logging = logging_info.get("client")
    if client_logging is None:
        return None

    if not isinstance(client_logging, dict):
        raise ValueError("metadata: /logging/client must be an object")

    argument = client_logging.get("argument")
    if not isinstance(argument, str):
        raise ValueError("metadata: /logging/client/argument must be a string")

    file_info = client_logging.get("file")
    if not isinstance(file_info, dict):
        raise ValueError("metadata: /logging/client/file must be an object")

    file_id = file_info.get("id")
    if not isinstance(file_id, str):
        raise ValueError("metadata: /logging/client/file/id must be a string")

    file = context.assets_dir / "log_configs" / file_id
    return argument, parse_download_entry(file_info, file, "metadata: /logging/client/file")


class Fetcher:
    """Fetch all files of resolved profiles, with the downloader chosen at construction.
    """

    def __init__(self, context: Context, downloader: Optional[Downloader] = None, *,
        retry: Optional[RetryPolicy] = None,
        events: Optional[EventChannel] = None,
        min_jar_size: int = MIN_CLIENT_JAR_SIZE,
        resources_url: str = RESOURCES_URL
    ) -> None:
        self.context = context
        self.downloader = downloader or ThreadedDownloader(retry=retry)
        self.retry = retry
        self.events = events
        self.min_jar_size = min_jar_size
        self.resources_url = resources_url

    def fetch_all(self, profile: VersionProfile) -> FetchReport:
        """Download every missing file of the profile. Files already installed with the
        expected size are skipped. This never raises for a single failed file, those
        are given in the report's errors.

        :raises ValueError: If some metadata is malformed.
        """

        report = FetchReport()
        dl = DownloadList()

        if profile.client_download is not None:
            self._add(dl, report, profile.client_download)
        elif not profile.jar_path.is_file():
            report.errors.append(FetchError(profile.id, profile.jar_path, FetchError.RESOURCE_MISSING))

        for lib in profile.libraries:
            if lib.download is not None:
                self._add(dl, report, lib.download)
            elif not lib.path.is_file():
                logger.warning("library %s has no download and is not installed", lib.spec)
                report.errors.append(FetchError(str(lib.spec), lib.path, FetchError.RESOURCE_MISSING))

        assets_index = self._load_assets_index(profile, report)
        if assets_index is not None:
            publish(self.events, AssetsResolveEvent(assets_index.version, len(assets_index.objects)))
            for asset_id, (asset_hash, asset_size) in assets_index.objects.items():
                asset_url = f"{self.resources_url}{asset_hash[:2]}/{asset_hash}"
                asset_file = assets_index.object_file(self.context, asset_id)
                self._add(dl, report, DownloadEntry(asset_url, asset_file, size=asset_size, sha1=asset_hash, name=asset_id))

        logger_info = logging_config(self.context, profile)
        if logger_info is not None:
            self._add(dl, report, logger_info[1])

        download_all(self.downloader, dl, report, self.events)

        if assets_index is not None:
            self._finalize_assets(assets_index, report)

        logger.info("fetched %s: %d downloaded, %d skipped, %d errors",
            profile.id, report.success_count, report.skipped_count, len(report.errors))

        return report

    def verify(self, profile: VersionProfile) -> None:
        """Check that the profile is ready to launch: the JAR file is present and not
        truncated, and all libraries are installed.

        :raises ResourceMissingError: If the JAR file is missing.
        :raises VerificationFailedError: If the JAR file seems invalid.
        :raises LibraryNotFoundError: If a library is missing.
        """

        jar_path = profile.jar_path
        if not jar_path.is_file():
            raise ResourceMissingError(jar_path)

        size = jar_path.stat().st_size
        if size < self.min_jar_size:
            expected_size = None if profile.client_download is None else profile.client_download.size
            if expected_size is None or expected_size != size:
                raise VerificationFailedError(jar_path, size)

        for lib in profile.libraries:
            if not lib.path.is_file():
                raise LibraryNotFoundError(lib.spec)

    def _add(self, dl: DownloadList, report: FetchReport, entry: DownloadEntry) -> None:
        if not dl.add(entry, verify=True):
            report.skipped_count += 1

    def _load_assets_index(self, profile: VersionProfile, report: FetchReport) -> Optional[AssetsIndex]:
        """Read the assets index of the profile, fetching it if not installed. A failure
        to fetch it is recorded in the report.
        """

        version = profile.assets_index_version
        if version is None:
            return None

        assets_index = read_assets_index(self.context, version)
        if assets_index is not None:
            return assets_index

        # If for some reason we can't read an assets index, try downloading it.
        assets_index_info = profile.metadata.get("assetIndex", {})
        assets_index_url = assets_index_info.get("url")
        if not isinstance(assets_index_url, str):
            raise ValueError("metadata: /assetIndex/url must be a string")

        file = assets_index_file(self.context, version)

        try:
            res = http_request("GET", assets_index_url, accept="application/json", retry=self.retry)
        except HttpError as error:
            logger.warning("failed to fetch assets index %s: %s", version, error)
            code = DownloadResultError.NOT_FOUND if error.res.status else DownloadResultError.CONNECTION
            report.errors.append(FetchError(f"assets index {version}", file, code, error))
            return None

        assets_index = AssetsIndex.from_dict(version, res.json())

        # The index is still usable for this fetch if it can't be saved.
        try:
            file.parent.mkdir(parents=True, exist_ok=True)
            with file.open("wb") as fp:
                fp.write(res.data)
        except OSError as error:
            logger.warning("failed to write assets index %s: %s", version, error)
            report.errors.append(FetchError(f"assets index {version}", file, FetchError.WRITE_FAILED, error))
        else:
            report.success_count += 1

        return assets_index

    def _finalize_assets(self, assets_index: AssetsIndex, report: FetchReport) -> None:
        """Copy assets to their legacy directory for old versions, each failed copy is
        recorded in the report.
        """

        legacy_dir = assets_index.legacy_dir(self.context)
        if legacy_dir is None:
            return

        for asset_id in assets_index.objects:
            asset_file = assets_index.object_file(self.context, asset_id)
            dst_file = legacy_dir / asset_id
            if not asset_file.is_file() or dst_file.is_file():
                continue
            try:
                dst_file.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(str(asset_file), str(dst_file))
            except OSError as error:
                logger.warning("failed to copy asset %s to %s: %s", asset_id, legacy_dir, error)
                report.errors.append(FetchError(asset_id, dst_file, FetchError.WRITE_FAILED, error))


def download_all(downloader: Downloader, dl: DownloadList, report: FetchReport,
    events: Optional[EventChannel] = None
) -> None:
    """Download all entries of the list, counting successes and recording failures in
    the report. Nothing is published for an empty list.
    """

    if not dl.count:
        return

    publish(events, DownloadStartEvent(dl.count, dl.size))

    for result_count, result in downloader.download(dl):
        if isinstance(result, DownloadResultProgress):
            if result.done:
                report.success_count += 1
            publish(events, DownloadProgressEvent(result.thread_id, result.entry, result.size, result.speed, result_count, dl.count))
        elif isinstance(result, DownloadResultError):
            logger.warning("failed to download %s: %s", result.entry.name, result.code)
            report.errors.append(FetchError(result.entry.name, result.entry.dst, result.code, result.origin))

    publish(events, DownloadCompleteEvent(report))


class ResourceMissingError(Exception):
    """Raised when a required file is missing from the installation.
    """
    def __init__(self, path: Path) -> None:
        super().__init__(path)
        self.path = path

    def __str__(self) -> str:
        return f"missing file: {self.path}"

class VerificationFailedError(Exception):
    """Raised when an installed file fails verification, its path and size are given.
    """
    def __init__(self, path: Path, size: int) -> None:
        super().__init__(path, size)
        self.path = path
        self.size = size

    def __str__(self) -> str:
        return f"invalid file: {self.path} ({self.size} bytes)"


class AssetsResolveEvent:
    __slots__ = "index_version", "count"
    def __init__(self, index_version: str, count: int) -> None:
        self.index_version = index_version
        self.count = count

class DownloadStartEvent:
    __slots__ = "entries_count", "size"
    def __init__(self, entries_count: int, size: int) -> None:
        self.entries_count = entries_count
        self.size = size

class DownloadProgressEvent:
    __slots__ = "thread_id", "entry", "size", "speed", "count", "total_count"
    def __init__(self, thread_id: int, entry: DownloadEntry, size: int, speed: float, count: int, total_count: int) -> None:
        self.thread_id = thread_id
        self.entry = entry
        self.size = size
        self.speed = speed
        self.count = count
        self.total_count = total_count

class DownloadCompleteEvent:
    __slots__ = "report",
    def __init__(self, report: FetchReport) -> None:
        self.report = report
