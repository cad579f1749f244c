"""Tests of version resolution, metadata is installed locally so that nothing is fetched
from the network.
"""

from pathlib import Path
import json
import pytest

from mcclient.standard import Context, VersionManifest
from mcclient.resolve import Resolver, LibraryEntry, VersionNotFoundError, \
    TooMuchParentsError, JarNotFoundError, LoaderResolveEvent, VersionLoadedEvent, \
    DEFAULT_LOADER_MAIN_CLASS, library_priority, is_pinned_version
from mcclient.fabric import FabricApi, LoaderSpec, FABRIC_API
from mcclient.events import EventChannel
from mcclient.util import LibrarySpecifier

from typing import List, Optional


def library(name: str, url: Optional[str] = "https://libraries.minecraft.net/", **extra) -> dict:
    spec = LibrarySpecifier.from_str(name)
    lib = {"name": name, **extra}
    if url is not None:
        lib["downloads"] = {"artifact": {"url": f"{url}{spec.file_path()}", "size": 10}}
    return lib


def vanilla_metadata(version: str, libraries: List[dict]) -> dict:
    return {
        "id": version,
        "type": "release",
        "mainClass": "net.minecraft.client.main.Main",
        "arguments": {"game": ["--username", "${auth_player_name}"], "jvm": ["-cp", "${classpath}"]},
        "assetIndex": {"id": "5", "url": "https://piston-meta.mojang.com/v1/packages/abc/5.json"},
        "assets": "5",
        "downloads": {"client": {"url": "https://piston-data.mojang.com/v1/objects/abc/client.jar", "size": 2000000}},
        "libraries": libraries,
    }


def loader_metadata(version: str, libraries: List[dict]) -> dict:
    return {
        "id": version,
        "inheritsFrom": "somewhere-else",
        "type": "release",
        "mainClass": "net.fabricmc.loader.impl.launch.knot.KnotClient",
        "arguments": {"game": [], "jvm": ["-DFabricMcEmu= net.minecraft.client.main.Main "]},
        "libraries": libraries,
    }


def install_version(context: Context, version: str, metadata: dict) -> None:
    handle = context.get_version(version)
    handle.metadata = metadata
    handle.write_metadata_file()


def offline_manifest() -> VersionManifest:
    manifest = VersionManifest()
    manifest.data = {"latest": {"release": "1.20.1", "snapshot": "1.20.1"}, "versions": []}
    return manifest


VANILLA_LIBS = [
    library("org.ow2.asm:asm:9.3"),
    library("com.mojang:brigadier:1.1.8"),
    library("org.lwjgl:lwjgl:3.3.1"),
    library("org.lwjgl:lwjgl:3.3.1:natives-linux"),
]

LOADER_LIBS = [
    library("net.fabricmc:fabric-loader:0.16.0", "https://maven.fabricmc.net/"),
    library("org.ow2.asm:asm:9.8", "https://maven.fabricmc.net/"),
    library("org.ow2.asm:asm-tree:9.8", "https://maven.fabricmc.net/"),
]


def test_resolve_vanilla(tmp_context: Context):

    install_version(tmp_context, "1.20.1", vanilla_metadata("1.20.1", VANILLA_LIBS))

    events = EventChannel()
    loaded = []
    events.subscribe(VersionLoadedEvent, loaded.append)

    resolver = Resolver(tmp_context, offline_manifest(), events=events)
    profile = resolver.resolve("release")

    assert profile.id == "1.20.1"
    assert profile.inherits_from is None
    assert profile.hierarchy == ("1.20.1",)
    assert profile.main_class == "net.minecraft.client.main.Main"
    assert profile.modern
    assert profile.version_type == "release"
    assert profile.assets_index_version == "5"
    assert profile.jar_path == tmp_context.versions_dir / "1.20.1" / "1.20.1.jar"
    assert profile.client_download is not None and profile.client_download.size == 2000000

    assert profile.library_keys() == [
        "org.ow2.asm:asm",
        "com.mojang:brigadier",
        "org.lwjgl:lwjgl",
        "org.lwjgl:lwjgl:3.3.1:natives-linux",
    ]
    assert [str(lib.spec) for lib in profile.native_libraries()] == ["org.lwjgl:lwjgl:3.3.1:natives-linux"]

    asm = profile.libraries[0]
    assert asm.path == tmp_context.libraries_dir / "org/ow2/asm/asm/9.3/asm-9.3.jar"
    assert asm.download is not None
    assert asm.download.name == "org.ow2.asm:asm:9.3"

    assert [(e.version, e.fetched) for e in loaded] == [("1.20.1", False)]


def test_resolve_loader(tmp_context: Context):

    install_version(tmp_context, "1.20.1", vanilla_metadata("1.20.1", VANILLA_LIBS))
    install_version(tmp_context, "fabric-loader-0.16.0-1.20.1", loader_metadata("fabric-loader-0.16.0-1.20.1", LOADER_LIBS))

    resolver = Resolver(tmp_context, offline_manifest())
    profile = resolver.resolve("1.20.1", LoaderSpec(FABRIC_API, "0.16.0"))

    assert profile.id == "fabric-loader-0.16.0-1.20.1"
    assert profile.inherits_from == "1.20.1"
    assert profile.ancestor_id == "1.20.1"
    assert profile.main_class == "net.fabricmc.loader.impl.launch.knot.KnotClient"
    assert "inheritsFrom" not in profile.metadata

    # The JAR is shared with the vanilla version.
    assert profile.jar_path == tmp_context.versions_dir / "1.20.1" / "1.20.1.jar"
    assert profile.assets_index_version == "5"

    # Arguments of both versions are merged, parents first.
    assert profile.metadata["arguments"]["jvm"] == ["-cp", "${classpath}", "-DFabricMcEmu= net.minecraft.client.main.Main "]

    # Loader libraries come first, a single ASM library is kept.
    assert profile.library_keys() == [
        "net.fabricmc:fabric-loader",
        "org.ow2.asm:asm",
        "org.ow2.asm:asm-tree",
        "com.mojang:brigadier",
        "org.lwjgl:lwjgl",
        "org.lwjgl:lwjgl:3.3.1:natives-linux",
    ]
    asm = [lib for lib in profile.libraries if lib.key() == "org.ow2.asm:asm"]
    assert len(asm) == 1
    assert asm[0].spec.version == "9.8"

    # Resolution is idempotent.
    again = resolver.resolve("1.20.1", LoaderSpec(FABRIC_API, "0.16.0"))
    assert [str(lib.spec) for lib in again.libraries] == [str(lib.spec) for lib in profile.libraries]
    assert again.metadata == profile.metadata


def test_priority_replaces_in_place(tmp_context: Context):

    # The vanilla version references a newer ASM than the loader.
    install_version(tmp_context, "1.20.1", vanilla_metadata("1.20.1", [
        library("com.mojang:brigadier:1.1.8"),
        library("org.ow2.asm:asm-tree:9.9"),
    ]))
    install_version(tmp_context, "fabric-loader-0.16.0-1.20.1", loader_metadata("fabric-loader-0.16.0-1.20.1", [
        library("org.ow2.asm:asm-tree:9.6", "https://maven.fabricmc.net/"),
        library("net.fabricmc:fabric-loader:0.16.0", "https://maven.fabricmc.net/"),
    ]))

    profile = Resolver(tmp_context, offline_manifest()).resolve("1.20.1", LoaderSpec(FABRIC_API, "0.16.0"))

    assert [str(lib.spec) for lib in profile.libraries] == [
        "org.ow2.asm:asm-tree:9.9",
        "net.fabricmc:fabric-loader:0.16.0",
        "com.mojang:brigadier:1.1.8",
    ]


@pytest.mark.parametrize("loader_asm, vanilla_asm, expected", [
    ("9.8", "9.9", "9.8"),
    ("9.9", "9.8", "9.8"),
    ("9.6", "9.7", "9.7"),
    ("9.8.1", "9.3", "9.8.1"),
])
def test_pinned_library(tmp_context: Context, loader_asm: str, vanilla_asm: str, expected: str):

    install_version(tmp_context, "1.20.1", vanilla_metadata("1.20.1", [library(f"org.ow2.asm:asm:{vanilla_asm}")]))
    install_version(tmp_context, "fabric-loader-0.16.0-1.20.1", loader_metadata("fabric-loader-0.16.0-1.20.1", [
        library(f"org.ow2.asm:asm:{loader_asm}", "https://maven.fabricmc.net/"),
    ]))

    profile = Resolver(tmp_context, offline_manifest()).resolve("1.20.1", LoaderSpec(FABRIC_API, "0.16.0"))

    assert len(profile.libraries) == 1
    assert profile.libraries[0].spec.version == expected


class FakeFabricApi(FabricApi):

    def __init__(self, profile: Optional[dict]) -> None:
        super().__init__("fabric", "https://meta.test/v2/", "fabric-loader")
        self.profile = profile
        self.requests: List[str] = []

    def request_fabric_meta(self, method: str, *, retry=None):
        self.requests.append(method)
        if method == "versions/loader/1.20.1":
            return [{"loader": {"version": "0.16.5", "stable": True}}]
        elif method == "versions/loader/1.20.1/0.16.5/profile/json":
            return self.profile
        raise AssertionError(f"unexpected request {method}")


def test_resolve_loader_fetched(tmp_context: Context):

    install_version(tmp_context, "1.20.1", vanilla_metadata("1.20.1", VANILLA_LIBS))

    api = FakeFabricApi(loader_metadata("whatever", LOADER_LIBS))

    events = EventChannel()
    resolved = []
    events.subscribe(LoaderResolveEvent, resolved.append)

    resolver = Resolver(tmp_context, offline_manifest(), events=events)
    profile = resolver.resolve("1.20.1", LoaderSpec(api))

    assert profile.id == "fabric-loader-0.16.5-1.20.1"
    assert profile.main_class == DEFAULT_LOADER_MAIN_CLASS
    assert tmp_context.get_version("fabric-loader-0.16.5-1.20.1").metadata_exists()
    assert len(resolved) == 1
    assert resolved[0].loader_version == "0.16.5"
    assert resolved[0].vanilla_version == "1.20.1"

    # Installed now, only the loader version is requested again.
    api.requests.clear()
    resolver.resolve("1.20.1", LoaderSpec(api))
    assert api.requests == ["versions/loader/1.20.1"]


def test_loader_not_found(tmp_context: Context):

    install_version(tmp_context, "1.20.1", vanilla_metadata("1.20.1", VANILLA_LIBS))

    class EmptyApi(FakeFabricApi):
        def request_fabric_meta(self, method: str, *, retry=None):
            return []

    with pytest.raises(VersionNotFoundError):
        Resolver(tmp_context, offline_manifest()).resolve("1.20.1", LoaderSpec(EmptyApi(None)))


def test_version_not_found(tmp_context: Context):
    with pytest.raises(VersionNotFoundError) as error:
        Resolver(tmp_context, offline_manifest()).resolve("1.0.0-unknown")
    assert error.value.version == "1.0.0-unknown"


def test_too_much_parents(tmp_context: Context):

    for i in range(12):
        install_version(tmp_context, f"v{i}", {"id": f"v{i}", "inheritsFrom": f"v{i + 1}", "mainClass": "Main"})

    with pytest.raises(TooMuchParentsError):
        Resolver(tmp_context, offline_manifest()).resolve("v0")


def test_jar_not_found(tmp_context: Context):

    install_version(tmp_context, "custom", {"id": "custom", "mainClass": "Main"})
    resolver = Resolver(tmp_context, offline_manifest())

    with pytest.raises(JarNotFoundError):
        resolver.resolve("custom")

    # An installed JAR without download is used.
    jar_file = tmp_context.get_version("custom").jar_file()
    jar_file.write_bytes(b"jar")
    profile = resolver.resolve("custom")
    assert profile.jar_path == jar_file
    assert profile.client_download is None


def test_library_rules(tmp_context: Context, monkeypatch):

    monkeypatch.setattr("mcclient.resolve.minecraft_os", "linux")
    monkeypatch.setattr("mcclient.standard.minecraft_os", "linux")
    monkeypatch.setattr("mcclient.resolve.minecraft_arch_bits", 64)

    install_version(tmp_context, "legacy", {
        "id": "legacy",
        "mainClass": "net.minecraft.launchwrapper.Launch",
        "minecraftArguments": "--username ${auth_player_name}",
        "downloads": {"client": {"url": "https://test/client.jar"}},
        "libraries": [
            library("com.example:always:1.0"),
            library("com.example:osx-only:1.0", rules=[{"action": "allow", "os": {"name": "osx"}}]),
            library("com.example:not-linux:1.0", rules=[{"action": "allow"}, {"action": "disallow", "os": {"name": "linux"}}]),
            library("com.example:demo-only:1.0", rules=[{"action": "allow", "features": {"is_demo_user": True}}]),
            {
                "name": "org.lwjgl.lwjgl:lwjgl-platform:2.9.4",
                "natives": {"linux": "natives-linux-${arch}", "windows": "natives-windows"},
                "downloads": {"classifiers": {
                    "natives-linux-64": {"url": "https://test/lwjgl-platform-2.9.4-natives-linux-64.jar", "size": 20},
                    "natives-windows": {"url": "https://test/lwjgl-platform-2.9.4-natives-windows.jar", "size": 20},
                }},
            },
            {"name": "org.lwjgl.lwjgl:lwjgl-osx:2.9.4", "natives": {"osx": "natives-osx"}},
            {"name": "com.example:local-only:1.0", "url": ""},
        ],
    })

    profile = Resolver(tmp_context, offline_manifest()).resolve("legacy")
    assert not profile.modern

    assert [str(lib.spec) for lib in profile.libraries] == [
        "com.example:always:1.0",
        "org.lwjgl.lwjgl:lwjgl-platform:2.9.4:natives-linux-64",
        "com.example:local-only:1.0",
    ]

    native = profile.libraries[1]
    assert native.native
    assert native.download is not None
    assert native.download.url == "https://test/lwjgl-platform-2.9.4-natives-linux-64.jar"
    assert profile.libraries[2].download is None

    demo = Resolver(tmp_context, offline_manifest(), features={"is_demo_user": True}).resolve("legacy")
    assert "com.example:demo-only" in demo.library_keys()


def test_metadata_not_mutated(tmp_context: Context):

    install_version(tmp_context, "1.20.1", vanilla_metadata("1.20.1", VANILLA_LIBS))
    resolver = Resolver(tmp_context, offline_manifest())
    profile = resolver.resolve("1.20.1")

    profile.metadata["arguments"]["game"].append("--demo")

    with tmp_context.get_version("1.20.1").metadata_file().open("rt") as fp:
        assert "--demo" not in json.load(fp)["arguments"]["game"]

    assert "--demo" not in resolver.resolve("1.20.1").metadata["arguments"]["game"]


def test_library_priority():

    assert library_priority(LibrarySpecifier.from_str("org.ow2.asm:asm:9.8")) == (9, 8)
    assert library_priority(LibrarySpecifier.from_str("com.mojang:brigadier:1.1.8")) == (0,)

    native = LibraryEntry(LibrarySpecifier.from_str("org.lwjgl:lwjgl:3.3.1:natives-linux"), Path("lwjgl.jar"), True)
    regular = LibraryEntry(LibrarySpecifier.from_str("org.lwjgl:lwjgl:3.3.1"), Path("lwjgl.jar"), False)
    assert native.key() != regular.key()

    assert is_pinned_version("9.8", "9.8")
    assert is_pinned_version("9.8.1", "9.8")
    assert not is_pinned_version("9.80", "9.8")
    assert not is_pinned_version("9.7", "9.8")


@pytest.mark.slow
def test_resolve_remote(tmp_context: Context):
    profile = Resolver(tmp_context).resolve("1.20.1")
    assert profile.id == "1.20.1"
    assert profile.assets_index_version is not None
    assert len(profile.libraries)
