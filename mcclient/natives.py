"""Extraction of native libraries (dynamic libraries used by LWJGL and friends) into
the natives directory of a version, from where the JVM loads them.
"""

from zipfile import ZipFile, BadZipFile
from pathlib import Path
import logging
import shutil

from .resolve import VersionProfile

from typing import List, Tuple


logger = logging.getLogger(__name__)


NATIVE_SUFFIXES = (".so", ".dll", ".dylib", ".jnilib")
ARCHIVE_SUFFIXES = (".zip", ".jar")


class NativesReport:
    """Report of natives extraction, with the names of extracted and skipped (already
    present) files, and errors as tuples of the source file and its error.
    """

    def __init__(self) -> None:
        self.extracted: List[str] = []
        self.skipped: List[str] = []
        self.errors: List[Tuple[Path, Exception]] = []

    @property
    def success(self) -> bool:
        return not len(self.errors)

    def __repr__(self) -> str:
        return f"<NativesReport extracted: {len(self.extracted)}, skipped: {len(self.skipped)}, errors: {len(self.errors)}>"


def extract_natives(profile: VersionProfile, natives_dir: Path) -> NativesReport:
    """Extract all native libraries of the profile into the given directory. Files that
    are already present are never overwritten. A failing source file doesn't prevent
    the extraction of the others, its error is recorded in the report.
    """

    report = NativesReport()
    natives_dir.mkdir(parents=True, exist_ok=True)

    for lib in profile.native_libraries():
        try:
            if lib.path.name.endswith(ARCHIVE_SUFFIXES):
                _extract_archive(lib.path, natives_dir, report)
            else:
                _copy_file(lib.path, natives_dir, report)
        except (OSError, BadZipFile) as error:
            logger.warning("failed to extract natives from %s: %s", lib.path, error)
            report.errors.append((lib.path, error))

    logger.debug("natives of %s: %d extracted, %d skipped", profile.id, len(report.extracted), len(report.skipped))
    return report


def _extract_archive(src_file: Path, natives_dir: Path, report: NativesReport) -> None:

    with ZipFile(src_file, "r") as native_zip:
        for native_zip_info in native_zip.infolist():

            if native_zip_info.is_dir():
                continue

            native_name = native_zip_info.filename
            if not native_name.endswith(NATIVE_SUFFIXES):
                continue

            native_name = native_name.rpartition("/")[2]
            dst_file = natives_dir / native_name

            if dst_file.exists():
                report.skipped.append(native_name)
                continue

            with native_zip.open(native_zip_info, "r") as src_fp:
                with dst_file.open("xb") as dst_fp:
                    shutil.copyfileobj(src_fp, dst_fp)

            report.extracted.append(native_name)


def _copy_file(src_file: Path, natives_dir: Path, report: NativesReport) -> None:

    native_name = src_file.name
    # Here we try to remove the version numbers of .so files.
    so_idx = native_name.rfind(".so")
    if so_idx >= 0:
        native_name = native_name[:so_idx + len(".so")]

    dst_file = natives_dir / native_name
    if dst_file.exists():
        report.skipped.append(native_name)
        return

    shutil.copyfile(str(src_file), str(dst_file))
    report.extracted.append(native_name)
