from zipfile import ZipFile
from pathlib import Path

from mcclient.natives import extract_natives
from mcclient.resolve import VersionProfile, LibraryEntry
from mcclient.util import LibrarySpecifier

from typing import List


def make_profile(tmp_path: Path, libraries: List[LibraryEntry]) -> VersionProfile:
    return VersionProfile("test", None, "Main", libraries, {}, tmp_path / "test.jar", None, None, ["test"])


def native_lib(path: Path, name: str = "org.lwjgl:lwjgl:3.3.1:natives-linux") -> LibraryEntry:
    return LibraryEntry(LibrarySpecifier.from_str(name), path, True)


def test_extract_archive(tmp_path: Path):

    archive = tmp_path / "lwjgl-3.3.1-natives-linux.jar"
    with ZipFile(archive, "w") as zf:
        zf.writestr("META-INF/MANIFEST.MF", "Manifest-Version: 1.0\n")
        zf.writestr("linux/x64/org/lwjgl/liblwjgl.so", b"lwjgl")
        zf.writestr("windows/lwjgl.dll", b"dll")
        zf.writestr("macos/liblwjgl.dylib", b"dylib")
        zf.writestr("README.txt", "readme")

    # A regular library is never extracted.
    regular = LibraryEntry(LibrarySpecifier.from_str("org.lwjgl:lwjgl:3.3.1"), archive, False)

    natives_dir = tmp_path / "natives"
    report = extract_natives(make_profile(tmp_path, [regular, native_lib(archive)]), natives_dir)

    assert report.success
    assert sorted(report.extracted) == ["liblwjgl.dylib", "liblwjgl.so", "lwjgl.dll"]
    assert sorted(p.name for p in natives_dir.iterdir()) == ["liblwjgl.dylib", "liblwjgl.so", "lwjgl.dll"]
    assert (natives_dir / "liblwjgl.so").read_bytes() == b"lwjgl"


def test_extract_no_overwrite(tmp_path: Path):

    archive = tmp_path / "natives.jar"
    with ZipFile(archive, "w") as zf:
        zf.writestr("liblwjgl.so", b"new")
        zf.writestr("libopenal.so", b"openal")

    natives_dir = tmp_path / "natives"
    natives_dir.mkdir()
    (natives_dir / "liblwjgl.so").write_bytes(b"old")

    profile = make_profile(tmp_path, [native_lib(archive)])
    report = extract_natives(profile, natives_dir)

    assert report.success
    assert report.extracted == ["libopenal.so"]
    assert report.skipped == ["liblwjgl.so"]
    assert (natives_dir / "liblwjgl.so").read_bytes() == b"old"

    # Everything is skipped the second time.
    report = extract_natives(profile, natives_dir)
    assert report.extracted == []
    assert sorted(report.skipped) == ["liblwjgl.so", "libopenal.so"]


def test_copy_plain_file(tmp_path: Path):

    native_file = tmp_path / "libglfw.so.3.3"
    native_file.write_bytes(b"glfw")

    natives_dir = tmp_path / "natives"
    report = extract_natives(make_profile(tmp_path, [native_lib(native_file, "org.lwjgl:glfw:3.3:natives-linux")]), natives_dir)

    assert report.success
    assert report.extracted == ["libglfw.so"]
    assert (natives_dir / "libglfw.so").read_bytes() == b"glfw"


def test_extract_errors(tmp_path: Path):

    broken = tmp_path / "broken.jar"
    broken.write_bytes(b"this is not a zip file")
    missing = tmp_path / "missing.jar"

    valid = tmp_path / "valid.jar"
    with ZipFile(valid, "w") as zf:
        zf.writestr("libvalid.so", b"valid")

    natives_dir = tmp_path / "natives"
    profile = make_profile(tmp_path, [
        native_lib(broken, "com.example:broken:1.0:natives-linux"),
        native_lib(missing, "com.example:missing:1.0:natives-linux"),
        native_lib(valid, "com.example:valid:1.0:natives-linux"),
    ])
    report = extract_natives(profile, natives_dir)

    assert not report.success
    assert [path for path, _error in report.errors] == [broken, missing]
    assert report.extracted == ["libvalid.so"]
