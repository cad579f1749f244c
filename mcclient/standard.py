"""Primitives of the standard metadata format used by Mojang: installation context,
version handles, the official version manifest and the interpretation of rules and
arguments found in version metadata.
"""

from json import JSONDecodeError
from pathlib import Path
import platform
import logging
import json
import re

from .download import DownloadEntry
from .http import http_request, HttpError, RetryPolicy
from .auth import CREDENTIAL_FILE_NAME

from typing import Optional, Dict, List, Tuple, Any, Set


logger = logging.getLogger(__name__)


RESOURCES_URL = "https://resources.download.minecraft.net/"
VERSION_MANIFEST_URL = "https://piston-meta.mojang.com/mc/game/version_manifest_v2.json"

# Aliases accepted in place of a version identifier.
LATEST_ALIASES = ("release", "snapshot")


class Context:
    """Directories of an installation. Versions, assets and libraries live in the main
    directory, the game runs from the work directory, which also holds the credential.
    Both default to the usual `.minecraft` of the platform.
    """

    def __init__(self,
        main_dir: Optional[Path] = None,
        work_dir: Optional[Path] = None
    ) -> None:
        self.main_dir = get_minecraft_dir() if main_dir is None else main_dir
        self.work_dir = self.main_dir if work_dir is None else work_dir
        self.versions_dir = self.main_dir / "versions"
        self.assets_dir = self.main_dir / "assets"
        self.libraries_dir = self.main_dir / "libraries"
        self.jvm_dir = self.main_dir / "jvm"

    def get_version(self, version: str) -> "VersionHandle":
        return VersionHandle(version, self.versions_dir / version)

    def natives_dir(self, version: str) -> Path:
        """Directory where native libraries of the given version are extracted.
        """
        return self.versions_dir / version / "natives"

    def credential_file(self) -> Path:
        return self.work_dir / CREDENTIAL_FILE_NAME

    def manifest_cache_file(self) -> Path:
        return self.versions_dir / "version_manifest_v2.json"


class VersionHandle:
    """Metadata of a single version, as stored in `versions/<id>/<id>.json`, the
    game's JAR being stored beside it.
    """

    __slots__ = "id", "dir", "metadata"

    def __init__(self, id: str, dir: Path) -> None:
        self.id = id
        self.dir = dir
        self.metadata: dict = {}

    def metadata_file(self) -> Path:
        return self.dir / f"{self.id}.json"

    def jar_file(self) -> Path:
        return self.dir / f"{self.id}.jar"

    def metadata_exists(self) -> bool:
        return self.metadata_file().is_file()

    def read_metadata_file(self) -> bool:
        """Replace the metadata with the content of the file.

        :return: False, and the metadata is left untouched, if the file is missing or
        doesn't contain a JSON object.
        """
        try:
            metadata = json.loads(self.metadata_file().read_text(encoding="utf-8"))
        except (OSError, JSONDecodeError):
            return False
        if isinstance(metadata, dict):
            self.metadata = metadata
            return True
        return False

    def write_metadata_file(self) -> None:
        self.dir.mkdir(parents=True, exist_ok=True)
        self.metadata_file().write_text(json.dumps(self.metadata), encoding="utf-8")

    def __str__(self) -> str:
        return self.id

    def __repr__(self) -> str:
        return f"<VersionHandle {self.id}>"


class VersionManifest:
    """Mojang's manifest of all official versions, requested once and cached in a file
    if one is given. The cache is sent back as `If-Modified-Since` and is used alone if
    the network is unreachable.
    """

    def __init__(self, cache_file: Optional[Path] = None, *,
        retry: Optional[RetryPolicy] = None
    ) -> None:
        self.data: Optional[dict] = None
        self.cache_file = cache_file
        self.retry = retry

    def _read_cache(self) -> Optional[dict]:
        if self.cache_file is None:
            return None
        try:
            cache_data = json.loads(self.cache_file.read_text(encoding="utf-8"))
        except (OSError, JSONDecodeError):
            return None
        return cache_data if isinstance(cache_data, dict) else None

    def _write_cache(self, data: dict) -> None:
        if self.cache_file is not None:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            self.cache_file.write_text(json.dumps(data), encoding="utf-8")

    def _ensure_data(self) -> dict:
        """Return the manifest, requesting it on first use.

        :raises HttpError: If the manifest can't be requested and no cache is usable.
        """

        if self.data is not None:
            return self.data

        cache_data = self._read_cache()
        headers = {}
        if cache_data is not None and "last_modified" in cache_data:
            headers["If-Modified-Since"] = cache_data["last_modified"]

        try:
            res = http_request("GET", VERSION_MANIFEST_URL, headers=headers, accept="application/json", retry=self.retry)
        except HttpError as error:
            # Status 0 is a connection error, 304 means the cache is up-to-date.
            if cache_data is None or error.res.status not in (0, 304):
                raise
            logger.debug("using cached version manifest (status %d)", error.res.status)
            self.data = cache_data
            return cache_data

        data = res.json()
        if not isinstance(data, dict):
            raise ValueError("version manifest: / must be an object")

        last_modified = res.headers.get("Last-Modified")
        if last_modified is not None:
            data["last_modified"] = last_modified

        self._write_cache(data)
        self.data = data
        return data

    def filter_latest(self, version: str) -> Tuple[str, bool]:
        """Replace the `release` and `snapshot` aliases with the latest version of that
        kind, for example `1.20.1`.

        :return: The version identifier, and true if the given one was an alias.
        :raises HttpError: Only for aliases, if the manifest can't be requested.
        """

        if version in LATEST_ALIASES:
            latest = self._ensure_data().get("latest", {}).get(version)
            if latest is not None:
                return latest, True
        return version, False

    def get_version(self, version: str) -> Optional[dict]:
        """Find the manifest entry of a version, giving the URL and SHA-1 of its
        metadata, or none if the manifest doesn't know that version.

        :raises HttpError: If the manifest can't be requested.
        """
        version = self.filter_latest(version)[0]
        return next((v for v in self._ensure_data()["versions"] if v["id"] == version), None)


def parse_download_entry(value: Any, dst: Path, path: str) -> DownloadEntry:
    """Parse a `{url, size, sha1}` object of version metadata into an entry downloading
    to the given destination.
    """

    if not isinstance(value, dict):
        raise ValueError(f"{path} must be an object")

    url = value.get("url")
    if not isinstance(url, str):
        raise ValueError(f"{path}/url must be a string")

    for key, expected_type, type_name in (("size", int, "an integer"), ("sha1", str, "a string")):
        if value.get(key) is not None and not isinstance(value[key], expected_type):
            raise ValueError(f"{path}/{key} must be {type_name}")

    return DownloadEntry(url, dst, size=value.get("size"), sha1=value.get("sha1"), name=dst.name)


def interpret_rule(rules: Any, features: Dict[str, bool], path: str, *,
    all_features: Optional[Set[str]] = None
) -> bool:
    """Evaluate a list of rules, the last matching rule's action wins but any matching
    `disallow` forbids. Nothing is allowed when no rule matches. Names of the features
    tested by the rules are added to `all_features` if given.
    """

    if not isinstance(rules, list):
        raise ValueError(f"{path} must be a list")

    allowed = False
    for i, rule in enumerate(rules):

        rule_path = f"{path}/{i}"
        if not isinstance(rule, dict):
            raise ValueError(f"{rule_path} must be an object")

        action = rule.get("action")
        if action not in ("allow", "disallow"):
            raise ValueError(f"{rule_path}/action must be 'allow' or 'disallow'")

        if not _rule_matches(rule, features, rule_path, all_features):
            continue

        if action == "disallow":
            return False
        allowed = True

    return allowed


def _rule_matches(rule: dict, features: Dict[str, bool], path: str, all_features: Optional[Set[str]]) -> bool:

    rule_os = rule.get("os")
    if rule_os is not None and not interpret_rule_os(rule_os, f"{path}/os"):
        return False

    rule_features = rule.get("features")
    if rule_features is None:
        return True

    if not isinstance(rule_features, dict):
        raise ValueError(f"{path}/features must be an object")

    if all_features is not None:
        all_features.update(rule_features.keys())

    return all(features.get(name) == expected for name, expected in rule_features.items())


def interpret_rule_os(rule_os: Any, path: str) -> bool:
    """Check an OS constraint of a rule: name, architecture and a regex on the OS
    version, each one optional.
    """

    if not isinstance(rule_os, dict):
        raise ValueError(f"{path} must be an object")

    name = rule_os.get("name")
    if name is not None and name != minecraft_os:
        return False

    arch = rule_os.get("arch")
    if arch is not None and arch != minecraft_arch:
        return False

    version = rule_os.get("version")
    return version is None or re.search(version, platform.version()) is not None


def interpret_args(args: Any, features: Dict[str, bool], dst: List[str], path: str, *,
    all_features: Optional[Set[str]] = None
) -> None:
    """Append the arguments allowed by their rules to `dst`. Each argument is either a
    plain string, or an object with optional rules and a value (string or list).
    """

    if not isinstance(args, list):
        raise ValueError(f"{path} must be a list")

    for i, arg in enumerate(args):

        if isinstance(arg, str):
            dst.append(arg)
            continue

        if not isinstance(arg, dict):
            raise ValueError(f"{path}/{i} must be an object or a string")

        rules = arg.get("rules")
        if rules is not None and not interpret_rule(rules, features, f"{path}/{i}/rules", all_features=all_features):
            continue

        value = arg.get("value")
        if isinstance(value, str):
            dst.append(value)
        elif isinstance(value, list) and all(isinstance(v, str) for v in value):
            dst.extend(value)
        else:
            raise ValueError(f"{path}/{i}/value must be a string or a list of strings")


def get_minecraft_dir() -> Path:
    """Default main directory of the launcher on the current platform.
    """
    home = Path.home()
    system = platform.system()
    if system == "Windows":
        return home / "AppData" / "Roaming" / ".minecraft"
    elif system == "Darwin":
        return home / "Library" / "Application Support" / "minecraft"
    return home / ".minecraft"


_OS_NAMES = {"Linux": "linux", "Windows": "windows", "Darwin": "osx", "FreeBSD": "freebsd"}
_ARCH_NAMES = {
    "x86_64": "x86_64", "amd64": "x86_64",
    "i386": "x86", "i686": "x86",
    "arm64": "arm64", "aarch64": "arm64",
    "armv7l": "arm32", "armv6l": "arm32",
}

# Platform names as used in rules and natives mappings of version metadata.
minecraft_os = _OS_NAMES.get(platform.system())
minecraft_arch = _ARCH_NAMES.get(platform.machine().lower())
# Pointer size, substituted to `${arch}` in natives classifiers.
minecraft_arch_bits = {"64bit": 64, "32bit": 32}.get(platform.architecture()[0])

# Platform names used by Mojang for the Java runtimes it distributes.
minecraft_jvm_os = None if minecraft_arch is None else {
    "Darwin": {"x86_64": "mac-os", "arm64": "mac-os-arm64"},
    "Linux": {"x86": "linux-i386", "x86_64": "linux"},
    "Windows": {"x86": "windows-x86", "x86_64": "windows-x64"},
}.get(platform.system(), {}).get(minecraft_arch)
