"""Resolution of a version, and optionally of a mod loader on top of it, into a single
flattened `VersionProfile`.

Versions form a hierarchy through their `inheritsFrom` field, the root of the
hierarchy being the most specific version (the mod loader when there is one). Every
field is merged from the root to its ancestors, but libraries need more care: the
same library may be referenced by several versions with different versions, so they
are deduplicated by key and conflicts are solved with a priority (see
`library_priority`) and a few pinned versions (see `PINNED_LIBRARIES`).
"""

from pathlib import Path
import logging
import copy

from .standard import Context, VersionHandle, VersionManifest, \
    parse_download_entry, interpret_rule, minecraft_os, minecraft_arch_bits
from .download import DownloadEntry
from .fabric import LoaderSpec
from .events import EventChannel, publish
from .http import http_request, HttpError, RetryPolicy
from .util import LibrarySpecifier, merge_dict, calc_input_sha1, parse_version_tuple

from typing import Optional, Dict, List, Tuple, Any


logger = logging.getLogger(__name__)


# Library groups known to conflict between vanilla and mod loaders, for these groups
# the most recent version wins.
PRIORITY_FAMILIES = ("org.ow2.asm",)
# Libraries that must stay at a given version (prefix) when any version hierarchy
# references it, regardless of priority. Mod loaders rely on these exact versions.
# When no referenced version matches, the library chosen by priority is kept.
PINNED_LIBRARIES = {
    "org.ow2.asm:asm": "9.8",
}
# Main class used when a loader profile doesn't give one.
DEFAULT_LOADER_MAIN_CLASS = "net.fabricmc.loader.impl.launch.knot.KnotClient"
# Maximum depth of a version hierarchy.
MAX_HIERARCHY_DEPTH = 10


def library_priority(spec: LibrarySpecifier) -> Tuple[int, ...]:
    """Return the merge priority of a library, derived from its version for the known
    conflict-prone families, and `(0,)` for all others.
    """
    if spec.group in PRIORITY_FAMILIES:
        return parse_version_tuple(spec.version) or (0,)
    return (0,)


def is_pinned_version(version: str, pinned: str) -> bool:
    return version == pinned or version.startswith(f"{pinned}.")


class LibraryEntry:
    """A library resolved from version metadata, with its local path and how to
    download it if there is a way.
    """

    __slots__ = "spec", "path", "native", "priority", "download"

    def __init__(self, spec: LibrarySpecifier, path: Path, native: bool, *,
        download: Optional[DownloadEntry] = None
    ) -> None:
        self.spec = spec
        self.path = path
        self.native = native
        self.priority = library_priority(spec)
        self.download = download

    def key(self) -> str:
        """Key used for deduplication: native libraries are keyed by their full
        coordinate (including classifier) so they never collapse with the regular
        library of the same artifact, others by their group and artifact.
        """
        if self.native:
            return str(self.spec)
        return f"{self.spec.group}:{self.spec.artifact}"

    def __repr__(self) -> str:
        return f"<LibraryEntry {self.spec}{' (native)' if self.native else ''}>"


class VersionProfile:
    """The flattened result of the resolution of a version hierarchy. This object is
    never modified once resolved.
    """

    def __init__(self,
        id: str,
        inherits_from: Optional[str],
        main_class: str,
        libraries: List[LibraryEntry],
        metadata: dict,
        jar_path: Path,
        client_download: Optional[DownloadEntry],
        assets_index_version: Optional[str],
        hierarchy: List[str]
    ) -> None:
        self.id = id
        self.inherits_from = inherits_from
        self.main_class = main_class
        self.libraries = tuple(libraries)
        self.metadata = metadata
        self.jar_path = jar_path
        self.client_download = client_download
        self.assets_index_version = assets_index_version
        self.hierarchy = tuple(hierarchy)

    @property
    def ancestor_id(self) -> str:
        """The identifier of the last version of the hierarchy, usually the vanilla one.
        """
        return self.hierarchy[-1]

    @property
    def modern(self) -> bool:
        """True if the version uses modern arguments (> 1.12.2).
        """
        return self.metadata.get("arguments") is not None

    @property
    def version_type(self) -> str:
        return str(self.metadata.get("type", ""))

    def native_libraries(self) -> List[LibraryEntry]:
        return [lib for lib in self.libraries if lib.native]

    def library_keys(self) -> List[str]:
        return [lib.key() for lib in self.libraries]

    def __repr__(self) -> str:
        return f"<VersionProfile {self.id}>"


class Resolver:
    """Resolve versions from the installation context, fetching missing or outdated
    metadata from the version manifest, and loader profiles from their APIs.
    """

    def __init__(self, context: Context, manifest: Optional[VersionManifest] = None, *,
        features: Optional[Dict[str, bool]] = None,
        retry: Optional[RetryPolicy] = None,
        events: Optional[EventChannel] = None
    ) -> None:
        self.context = context
        self.manifest = manifest or VersionManifest(context.manifest_cache_file(), retry=retry)
        self.features = {} if features is None else features
        self.retry = retry
        self.events = events

    def resolve(self, version: str, loader: Optional[LoaderSpec] = None) -> VersionProfile:
        """Resolve the given version, or alias `release`/`snapshot`, optionally with a mod
        loader merged on top of it.

        :raises VersionNotFoundError: If the version, or the loader for this version,
        can't be found.
        :raises HttpError: If metadata can't be fetched.
        :raises ValueError: If some metadata is malformed.
        """

        base_id = self.manifest.filter_latest(version)[0]
        hierarchy = self._load_hierarchy(base_id)

        if loader is not None:
            hierarchy.insert(0, self._load_loader(loader, base_id))

        return self._flatten(hierarchy, loader is not None)

    def _load_hierarchy(self, version: str) -> List[VersionHandle]:
        """Load the version and all of its parents, the version itself comes first.
        """

        hierarchy: List[VersionHandle] = []
        current: Optional[str] = version

        while current is not None:

            if len(hierarchy) >= MAX_HIERARCHY_DEPTH:
                raise TooMuchParentsError([v.id for v in hierarchy])

            publish(self.events, VersionLoadingEvent(current))

            handle = self.context.get_version(current)
            fetched = False
            if not self._load_version(handle):
                publish(self.events, VersionFetchingEvent(current))
                self._fetch_version(handle)
                fetched = True

            publish(self.events, VersionLoadedEvent(current, fetched))
            hierarchy.append(handle)

            current = handle.metadata.get("inheritsFrom")
            if current is not None and not isinstance(current, str):
                raise ValueError(f"metadata of {handle.id}: /inheritsFrom must be a string")

        return hierarchy

    def _load_version(self, version: VersionHandle) -> bool:
        """Load the metadata of the version from its file, returning false if it should
        be fetched instead: missing file, or SHA-1 different from the manifest.
        """

        if not version.read_metadata_file():
            return False

        try:
            version_super_meta = self.manifest.get_version(version.id)
        except HttpError as error:
            # Offline launches use the local metadata as is.
            logger.debug("version manifest unavailable, using local %s: %s", version.id, error)
            return True

        if version_super_meta is None:
            return True

        expected_sha1 = version_super_meta.get("sha1")
        if expected_sha1 is None:
            return True

        try:
            with version.metadata_file().open("rb") as version_meta_fp:
                return expected_sha1 == calc_input_sha1(version_meta_fp)
        except OSError:
            return False

    def _fetch_version(self, version: VersionHandle) -> None:

        version_super_meta = self.manifest.get_version(version.id)
        if version_super_meta is None:
            raise VersionNotFoundError(version.id)

        res = http_request("GET", version_super_meta["url"], accept="application/json", retry=self.retry)

        metadata = res.json()
        if not isinstance(metadata, dict):
            raise ValueError(f"metadata of {version.id}: / must be an object")
        version.metadata = metadata

        # Raw data is written so that its SHA-1 matches the manifest.
        version.dir.mkdir(parents=True, exist_ok=True)
        with version.metadata_file().open("wb") as fp:
            fp.write(res.data)

    def _load_loader(self, loader: LoaderSpec, vanilla_version: str) -> VersionHandle:
        """Load the loader profile for the given vanilla version, from its file if it
        has already been fetched.
        """

        loader_version = loader.resolve_loader_version(vanilla_version, retry=self.retry)
        if loader_version is None:
            raise VersionNotFoundError(f"{loader.prefix}-???-{vanilla_version}")

        publish(self.events, LoaderResolveEvent(loader, vanilla_version, loader_version))

        version_id = loader.version_id(vanilla_version, loader_version)
        publish(self.events, VersionLoadingEvent(version_id))

        handle = self.context.get_version(version_id)
        fetched = False
        if not handle.read_metadata_file():

            publish(self.events, VersionFetchingEvent(version_id))

            try:
                metadata = loader.api.request_version_loader_profile(vanilla_version, loader_version, retry=self.retry)
            except HttpError as error:
                if error.res.status not in (404, 400):
                    raise
                raise VersionNotFoundError(version_id)

            if not isinstance(metadata, dict):
                raise ValueError(f"metadata of {version_id}: / must be an object")

            handle.metadata = metadata
            handle.metadata["id"] = version_id
            handle.write_metadata_file()
            fetched = True

        # The base version is the one being resolved, whatever the profile says.
        handle.metadata["inheritsFrom"] = vanilla_version

        publish(self.events, VersionLoadedEvent(version_id, fetched))
        return handle

    def _flatten(self, hierarchy: List[VersionHandle], with_loader: bool) -> VersionProfile:
        """Merge the whole hierarchy into a profile, the first handle being the root.
        """

        root = hierarchy[0]

        metadata = {}
        for handle in hierarchy:
            merge_dict(metadata, copy.deepcopy({k: v for k, v in handle.metadata.items() if k != "libraries"}))
        metadata.pop("inheritsFrom", None)

        main_class = metadata.get("mainClass")
        if main_class is None and with_loader:
            main_class = DEFAULT_LOADER_MAIN_CLASS
        if not isinstance(main_class, str):
            raise ValueError("metadata: /mainClass must be a string")

        jar_path, client_download = self._resolve_jar(hierarchy)
        assets_index_version = self._resolve_assets_index_version(metadata)
        libraries = self._merge_libraries(hierarchy)

        native_count = sum(1 for lib in libraries if lib.native)
        publish(self.events, LibrariesResolvedEvent(len(libraries) - native_count, native_count))

        return VersionProfile(
            root.id,
            hierarchy[1].id if len(hierarchy) > 1 else None,
            main_class,
            libraries,
            metadata,
            jar_path,
            client_download,
            assets_index_version,
            [handle.id for handle in hierarchy])

    def _resolve_jar(self, hierarchy: List[VersionHandle]) -> Tuple[Path, Optional[DownloadEntry]]:
        """Find the JAR file of the game, it's stored in the directory of the version
        that gives its download, so loaders share the JAR of their vanilla version.
        """

        for handle in hierarchy:

            version_dls = handle.metadata.get("downloads")
            if version_dls is None:
                continue

            if not isinstance(version_dls, dict):
                raise ValueError(f"metadata of {handle.id}: /downloads must be an object")

            client_dl = version_dls.get("client")
            if client_dl is not None:
                jar_path = handle.jar_file()
                return jar_path, parse_download_entry(client_dl, jar_path, f"metadata of {handle.id}: /downloads/client")

        # A JAR installed without download information is still usable.
        for handle in hierarchy:
            if handle.jar_file().is_file():
                return handle.jar_file(), None

        raise JarNotFoundError(hierarchy[0].id)

    def _resolve_assets_index_version(self, metadata: dict) -> Optional[str]:

        assets_index_info = metadata.get("assetIndex")
        if assets_index_info is None:
            # Custom versions may bundle their own assets.
            return None

        if not isinstance(assets_index_info, dict):
            raise ValueError("metadata: /assetIndex must be an object")

        assets_index_version = metadata.get("assets", assets_index_info.get("id"))
        if assets_index_version is not None and not isinstance(assets_index_version, str):
            raise ValueError("metadata: /assets or /assetIndex/id must be a string")

        return assets_index_version

    def _merge_libraries(self, hierarchy: List[VersionHandle]) -> List[LibraryEntry]:
        """Merge libraries of the whole hierarchy. Libraries of the root come first and
        are already present when merging ancestors' ones: an ancestor's library only
        replaces one with the same key if its priority is strictly higher, and in such
        case it takes its place in the order.
        """

        merged: Dict[str, LibraryEntry] = {}
        candidates: Dict[str, List[LibraryEntry]] = {}

        for handle in hierarchy:
            for lib in self._collect_libraries(handle):

                key = lib.key()
                if key in PINNED_LIBRARIES:
                    candidates.setdefault(key, []).append(lib)

                current = merged.get(key)
                if current is None:
                    merged[key] = lib
                elif lib.priority > current.priority:
                    logger.debug("library %s replaced by %s (higher priority)", current.spec, lib.spec)
                    merged[key] = lib
                else:
                    logger.debug("library %s ignored, %s already present", lib.spec, current.spec)

        for key, pinned_version in PINNED_LIBRARIES.items():
            current = merged.get(key)
            if current is None or is_pinned_version(current.spec.version, pinned_version):
                continue
            for lib in candidates.get(key, ()):
                if is_pinned_version(lib.spec.version, pinned_version):
                    logger.debug("library %s replaced by pinned %s", current.spec, lib.spec)
                    merged[key] = lib
                    break

        return list(merged.values())

    def _collect_libraries(self, handle: VersionHandle) -> List[LibraryEntry]:
        """Parse the libraries of a single version metadata, filtering them with their
        rules and resolving native classifiers for the current OS.
        """

        metadata_libraries = handle.metadata.get("libraries")
        if metadata_libraries is None:
            return []

        path = f"metadata of {handle.id}: /libraries"
        if not isinstance(metadata_libraries, list):
            raise ValueError(f"{path} must be a list")

        libraries = []

        for library_idx, library in enumerate(metadata_libraries):

            lib_path = f"{path}/{library_idx}"

            if not isinstance(library, dict):
                raise ValueError(f"{lib_path} must be an object")

            name = library.get("name")
            if not isinstance(name, str):
                raise ValueError(f"{lib_path}/name must be a string")

            spec = LibrarySpecifier.from_str(name)

            rules = library.get("rules")
            if rules is not None:
                if not interpret_rule(rules, self.features, f"{lib_path}/rules"):
                    continue

            # Legacy natives: a mapping from OS name to the classifier of the archive
            # holding the dynamic libraries for that OS.
            natives = library.get("natives")
            if natives is not None:

                if not isinstance(natives, dict):
                    raise ValueError(f"{lib_path}/natives must be an object")

                spec.classifier = natives.get(minecraft_os)
                if spec.classifier is None:
                    continue

                if minecraft_arch_bits is not None:
                    spec.classifier = spec.classifier.replace("${arch}", str(minecraft_arch_bits))

            native = natives is not None or (spec.classifier or "").startswith("natives-")
            file = self.context.libraries_dir / spec.file_path()
            download = self._parse_library_download(library, spec, natives is not None, file, lib_path)

            libraries.append(LibraryEntry(spec, file, native, download=download))

        return libraries

    def _parse_library_download(self, library: dict, spec: LibrarySpecifier, legacy_natives: bool,
        file: Path, path: str
    ) -> Optional[DownloadEntry]:

        entry: Optional[DownloadEntry] = None

        downloads = library.get("downloads")
        if downloads is not None:

            if not isinstance(downloads, dict):
                raise ValueError(f"{path}/downloads must be an object")

            dl_meta: Any
            if legacy_natives:
                classifiers = downloads.get("classifiers")
                dl_meta = None if not isinstance(classifiers, dict) else classifiers.get(spec.classifier)
                dl_path = f"{path}/downloads/classifiers/{spec.classifier}"
            else:
                dl_meta = downloads.get("artifact")
                dl_path = f"{path}/downloads/artifact"

            if dl_meta is not None:
                entry = parse_download_entry(dl_meta, file, dl_path)

        # Otherwise the library may come from a Maven repository.
        if entry is None:
            repo_url = library.get("url")
            if repo_url is not None:

                if not isinstance(repo_url, str):
                    raise ValueError(f"{path}/url must be a string")

                if len(repo_url):
                    if repo_url[-1:] != "/":
                        repo_url += "/"
                    entry = DownloadEntry(f"{repo_url}{spec.file_path()}", file)

        # Some metadata gives an empty url for libraries only available locally.
        if entry is not None and not len(entry.url):
            return None

        if entry is not None:
            entry.name = str(spec)

        return entry


class VersionNotFoundError(Exception):
    """Raised when a version was not found. The version that was not found is given.
    """
    def __init__(self, version: str) -> None:
        super().__init__(version)
        self.version = version

    def __str__(self) -> str:
        return f"version not found: {self.version}"

class TooMuchParentsError(Exception):
    """Raised when a version hierarchy is too deep. The hierarchy of versions is given
    in property `versions`.
    """
    def __init__(self, versions: List[str]) -> None:
        super().__init__(versions)
        self.versions = versions

    def __str__(self) -> str:
        return f"version hierarchy too deep: {' -> '.join(self.versions)}"

class LibraryNotFoundError(Exception):
    """Raised when a library has no way to be downloaded and is not installed. The
    specifier of the library is given.
    """
    def __init__(self, spec: LibrarySpecifier) -> None:
        super().__init__(spec)
        self.spec = spec

    def __str__(self) -> str:
        return f"library not found: {self.spec}"

class JarNotFoundError(Exception):
    """Raised when no game's JAR file can be found for a version.
    """
    def __init__(self, version: str) -> None:
        super().__init__(version)
        self.version = version

    def __str__(self) -> str:
        return f"no jar file for version {self.version}"


class VersionLoadingEvent:
    __slots__ = "version",
    def __init__(self, version: str) -> None:
        self.version = version

class VersionFetchingEvent:
    __slots__ = "version",
    def __init__(self, version: str) -> None:
        self.version = version

class VersionLoadedEvent:
    __slots__ = "version", "fetched"
    def __init__(self, version: str, fetched: bool) -> None:
        self.version = version
        self.fetched = fetched

class LoaderResolveEvent:
    """Event triggered when the loader version has been resolved for a vanilla version.
    """
    __slots__ = "loader", "vanilla_version", "loader_version"
    def __init__(self, loader: LoaderSpec, vanilla_version: str, loader_version: str) -> None:
        self.loader = loader
        self.vanilla_version = vanilla_version
        self.loader_version = loader_version

class LibrariesResolvedEvent:
    __slots__ = "class_libs_count", "native_libs_count"
    def __init__(self, class_libs_count: int, native_libs_count: int) -> None:
        self.class_libs_count = class_libs_count
        self.native_libs_count = native_libs_count
