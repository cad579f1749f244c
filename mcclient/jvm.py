"""Lookup of a Java runtime suitable for running a given version, on the system or
from the runtimes distributed by Mojang.
"""

from subprocess import Popen, PIPE, STDOUT, TimeoutExpired
from json import JSONDecodeError
from pathlib import Path
import platform
import logging
import shutil
import json
import os
import re

from .standard import Context, parse_download_entry, minecraft_os, minecraft_jvm_os
from .download import DownloadList, Downloader, ThreadedDownloader
from .fetch import FetchReport, FetchError, download_all
from .resolve import VersionProfile
from .events import EventChannel, publish
from .http import http_request, RetryPolicy
from .util import jvm_bin_filename

from typing import Optional, List


logger = logging.getLogger(__name__)


# Maximum time to wait for 'java -version' to answer.
JVM_PROBE_TIMEOUT = 5.0

JVM_META_URL = "https://piston-meta.mojang.com/v1/products/java-runtime/2ec0cc96c44e5a76b9c8b7c39df7210883d12871/all.json"

# Mojang runtime components, for metadata that only gives the major version.
JVM_COMPONENTS = {8: "jre-legacy", 16: "java-runtime-alpha", 17: "java-runtime-gamma", 21: "java-runtime-delta"}

_RELEASE_RE = re.compile(r"^(\d+)\.(\d+)(?:\.(\d+))?")
_SNAPSHOT_RE = re.compile(r"^(\d{2})w\d{2}[a-z]$")
_JVM_VERSION_RE = re.compile(r'version "([^"]+)"')


def java_version_for(version: str) -> int:
    """Return the Java major version required by the given vanilla version identifier,
    used when the metadata doesn't specify it.
    """

    release = _RELEASE_RE.match(version)
    if release is not None:
        parts = tuple(int(part) for part in release.groups() if part is not None)
        if parts <= (1, 16, 5):
            return 8
        elif parts <= (1, 20, 4):
            return 17
        return 21

    snapshot = _SNAPSHOT_RE.match(version)
    if snapshot is not None:
        year = int(snapshot.group(1))
        if year <= 20:
            return 8
        elif year <= 23:
            return 17
        return 21

    # Alpha, beta and classic versions.
    return 8


def required_java_version(profile: VersionProfile) -> int:
    """Return the Java major version required by a profile, from its metadata if given,
    or derived from its vanilla version.
    """

    jvm_version_info = profile.metadata.get("javaVersion", {})
    if not isinstance(jvm_version_info, dict):
        raise ValueError("metadata: /javaVersion must be an object")

    jvm_major_version = jvm_version_info.get("majorVersion")
    if jvm_major_version is not None:
        if not isinstance(jvm_major_version, int):
            raise ValueError("metadata: /javaVersion/majorVersion must be an integer")
        return jvm_major_version

    return java_version_for(profile.ancestor_id)


def required_java_component(profile: VersionProfile) -> Optional[str]:
    """Return the Mojang runtime component able to run the profile, none if the major
    version required has no known component.
    """

    jvm_version_info = profile.metadata.get("javaVersion", {})
    if not isinstance(jvm_version_info, dict):
        raise ValueError("metadata: /javaVersion must be an object")

    component = jvm_version_info.get("component")
    if component is None:
        return JVM_COMPONENTS.get(required_java_version(profile))

    if not isinstance(component, str):
        raise ValueError("metadata: /javaVersion/component must be a string")
    return component


def parse_java_major_version(version: str) -> Optional[int]:
    """Parse the major version from a full Java version, `1.8.0_302` gives 8 and
    `17.0.2` gives 17.
    """
    parts = re.split(r"[._+-]", version)
    try:
        major = int(parts[0])
        if major == 1 and len(parts) > 1:
            major = int(parts[1])
    except ValueError:
        return None
    return major


def probe_jvm_version(path: Path) -> Optional[str]:
    """Run the JVM to get its full version, none if it can't be determined.
    """

    try:
        process = Popen([str(path), "-version"], stdout=PIPE, stderr=STDOUT, universal_newlines=True)
    except OSError as error:
        logger.debug("failed to run %s: %s", path, error)
        return None

    try:
        stdout, _stderr = process.communicate(timeout=JVM_PROBE_TIMEOUT)
    except TimeoutExpired:
        process.kill()
        process.communicate()
        return None

    match = _JVM_VERSION_RE.search(stdout)
    return None if match is None else match.group(1)


def is_compatible(major_version: int, required: int) -> bool:
    """Java 8 versions must run on Java 8, launchwrapper is broken on more recent
    runtimes, others just need a recent enough runtime.
    """
    if required <= 8:
        return major_version == required
    return major_version >= required


class JvmInfo:
    __slots__ = "path", "version"
    def __init__(self, path: Path, version: Optional[str]) -> None:
        self.path = path
        self.version = version

    def __repr__(self) -> str:
        return f"<JvmInfo {self.path} ({self.version or 'unknown version'})>"


def find_jvm(major_version: int, jvm_path: Optional[Path] = None) -> JvmInfo:
    """Find a Java runtime of the given major version. An explicit path is trusted as
    long as it exists, then `JAVA_HOME` and the executable found in `PATH` are checked
    against the required version.

    :raises JvmNotFoundError: If no suitable runtime can be found.
    """

    if jvm_path is not None:
        if not jvm_path.is_file():
            raise JvmNotFoundError(major_version, [jvm_path])
        return JvmInfo(jvm_path, probe_jvm_version(jvm_path))

    candidates: List[Path] = []

    java_home = os.environ.get("JAVA_HOME")
    if java_home:
        candidates.append(Path(java_home) / "bin" / jvm_bin_filename)

    builtin_path = shutil.which(jvm_bin_filename)
    if builtin_path is not None:
        candidates.append(Path(builtin_path))

    for candidate in candidates:

        if not candidate.is_file():
            continue

        version = probe_jvm_version(candidate)
        if version is None:
            continue

        candidate_major = parse_java_major_version(version)
        if candidate_major is not None and is_compatible(candidate_major, major_version):
            logger.debug("found java %s at %s", version, candidate)
            return JvmInfo(candidate, version)

        logger.debug("ignoring java %s at %s, %d required", version, candidate, major_version)

    raise JvmNotFoundError(major_version, candidates)


def mojang_jvm_os() -> Optional[str]:
    """Platform name of the runtimes distributed by Mojang, none if there are none for
    this platform. Linux runtimes are only built against glibc.
    """
    if platform.system() == "Linux" and platform.libc_ver()[0] != "glibc":
        return None
    return minecraft_jvm_os


class MojangJvmProvider:
    """Install the Java runtimes distributed by Mojang in the `jvm` directory of the
    installation, each component in its own directory. The manifest of an installed
    runtime is kept beside it, so the runtime is only verified on later uses.
    """

    def __init__(self, context: Context, downloader: Optional[Downloader] = None, *,
        retry: Optional[RetryPolicy] = None,
        events: Optional[EventChannel] = None,
        meta_url: str = JVM_META_URL,
        jvm_os: Optional[str] = None
    ) -> None:
        self.context = context
        self.downloader = downloader or ThreadedDownloader(retry=retry)
        self.retry = retry
        self.events = events
        self.meta_url = meta_url
        self.jvm_os = mojang_jvm_os() if jvm_os is None else jvm_os

    def jvm_file(self, component: str) -> Path:
        jvm_dir = self.context.jvm_dir / component
        # Runtimes for macOS are application bundles.
        if minecraft_os == "osx":
            return jvm_dir.joinpath("jre.bundle/Contents/Home/bin/java")
        return jvm_dir.joinpath("bin", jvm_bin_filename)

    def provide(self, component: str, major_version: int) -> JvmInfo:
        """Install the given runtime component if needed, and return its executable.

        :raises JvmNotFoundError: If Mojang doesn't distribute it for this platform.
        :raises JvmDownloadError: If some of its files failed to download.
        :raises HttpError: If its manifest can't be requested.
        :raises ValueError: If a manifest is malformed.
        """

        jvm_dir = self.context.jvm_dir / component
        manifest_file = self.context.jvm_dir / f"{component}.json"

        try:
            with manifest_file.open("rt") as manifest_fp:
                manifest = json.load(manifest_fp)
        except (OSError, JSONDecodeError):
            manifest = self._fetch_manifest(component, major_version)
            try:
                manifest_file.parent.mkdir(parents=True, exist_ok=True)
                with manifest_file.open("wt") as manifest_fp:
                    json.dump(manifest, manifest_fp)
            except OSError as error:
                logger.warning("failed to save the manifest of runtime %s: %s", component, error)

        if not isinstance(manifest, dict):
            raise ValueError("jvm manifest: / must be an object")

        jvm_files = manifest.get("files")
        if not isinstance(jvm_files, dict):
            raise ValueError("jvm manifest: /files must be an object")

        dl = DownloadList()
        for file_path, file_info in jvm_files.items():
            if not isinstance(file_info, dict):
                raise ValueError(f"jvm manifest: /files/{file_path} must be an object")
            # Directories are created with their files, links are not needed to run.
            if file_info.get("type") != "file":
                continue
            downloads = file_info.get("downloads")
            raw = downloads.get("raw") if isinstance(downloads, dict) else None
            entry = parse_download_entry(raw, jvm_dir / file_path, f"jvm manifest: /files/{file_path}/downloads/raw")
            entry.executable = file_info.get("executable", False) is True
            dl.add(entry, verify=True)

        report = FetchReport()
        download_all(self.downloader, dl, report, self.events)
        if not report.success:
            raise JvmDownloadError(component, report.errors)

        jvm_file = self.jvm_file(component)
        if not jvm_file.is_file():
            raise JvmNotFoundError(major_version, [jvm_file])

        # This key is custom and set when the manifest is fetched.
        version = manifest.get("version")
        version = version if isinstance(version, str) else None

        logger.info("using mojang runtime %s (%s)", component, version or "unknown version")
        publish(self.events, JvmLoadedEvent(version, JvmLoadedEvent.MOJANG))
        return JvmInfo(jvm_file, version)

    def _fetch_manifest(self, component: str, major_version: int) -> dict:

        if self.jvm_os is None:
            logger.debug("no mojang runtime for this platform")
            raise JvmNotFoundError(major_version, [])

        all_jvm_meta = http_request("GET", self.meta_url, accept="application/json", retry=self.retry).json()
        if not isinstance(all_jvm_meta, dict):
            raise ValueError("jvm metadata: / must be an object")

        jvm_os_meta = all_jvm_meta.get(self.jvm_os)
        if not isinstance(jvm_os_meta, dict):
            raise JvmNotFoundError(major_version, [])

        jvm_meta = jvm_os_meta.get(component)
        if not isinstance(jvm_meta, list) or not len(jvm_meta):
            logger.debug("no mojang runtime %s for %s", component, self.jvm_os)
            raise JvmNotFoundError(major_version, [])

        meta_path = f"jvm metadata: /{self.jvm_os}/{component}/0"
        if not isinstance(jvm_meta[0], dict):
            raise ValueError(f"{meta_path} must be an object")

        jvm_meta_manifest = jvm_meta[0].get("manifest")
        if not isinstance(jvm_meta_manifest, dict):
            raise ValueError(f"{meta_path}/manifest must be an object")

        jvm_meta_manifest_url = jvm_meta_manifest.get("url")
        if not isinstance(jvm_meta_manifest_url, str):
            raise ValueError(f"{meta_path}/manifest/url must be a string")

        manifest = http_request("GET", jvm_meta_manifest_url, accept="application/json", retry=self.retry).json()
        if not isinstance(manifest, dict):
            raise ValueError("jvm manifest: / must be an object")

        manifest["version"] = jvm_meta[0].get("version", {}).get("name")
        return manifest


class JvmNotFoundError(Exception):
    """Raised when no Java runtime can be found for the required major version, the
    checked candidates are given.
    """
    def __init__(self, major_version: int, candidates: List[Path]) -> None:
        super().__init__(major_version, candidates)
        self.major_version = major_version
        self.candidates = candidates

    def __str__(self) -> str:
        return f"no java {self.major_version} runtime found (checked: {', '.join(map(str, self.candidates)) or 'none'})"

class JvmDownloadError(Exception):
    """Raised when some files of a Mojang runtime failed to download.
    """
    def __init__(self, component: str, errors: List[FetchError]) -> None:
        super().__init__(component, errors)
        self.component = component
        self.errors = errors

    def __str__(self) -> str:
        return f"failed to download java runtime {self.component}: {len(self.errors)} file(s) failed"


class JvmLoadedEvent:
    """Published when the Java runtime to use is known, kind tells where it comes from.
    """

    MOJANG = "mojang"    # Runtime installed from Mojang
    BUILTIN = "builtin"  # Runtime found on the system
    CUSTOM = "custom"    # Runtime given explicitly

    __slots__ = "version", "kind"
    def __init__(self, version: Optional[str], kind: str) -> None:
        self.version = version
        self.kind = kind
