"""Construction of the full command line of the game from a resolved profile, the
player's credential and the launch options.
"""

from pathlib import Path
import logging
import re
import os

from . import LAUNCHER_NAME, LAUNCHER_VERSION
from .standard import Context, interpret_args
from .resolve import VersionProfile
from .fetch import logging_config, read_assets_index
from .fabric import LoaderSpec
from .auth import Credential

from typing import Optional, Dict, List, Tuple, Set


logger = logging.getLogger(__name__)


DEFAULT_SERVER_PORT = 25565
DEFAULT_MAX_MEMORY_MB = 4096
# The initial heap is the maximum heap, capped to this value.
INITIAL_MEMORY_CAP_MB = 1024

LAUNCHWRAPPER_MAIN_CLASS = "net.minecraft.launchwrapper.Launch"

# G1 garbage collector tuning, reduces the pauses of the game.
G1_JVM_ARGS = [
    "-XX:+UseG1GC",
    "-XX:+ParallelRefProcEnabled",
    "-XX:MaxGCPauseMillis=200",
    "-XX:+UnlockExperimentalVMOptions",
    "-XX:+DisableExplicitGC",
    "-XX:+AlwaysPreTouch",
    "-XX:G1NewSizePercent=30",
    "-XX:G1MaxNewSizePercent=40",
    "-XX:G1HeapRegionSize=8M",
    "-XX:G1ReservePercent=20",
    "-XX:G1HeapWastePercent=5",
    "-XX:G1MixedGCCountTarget=4",
    "-XX:InitiatingHeapOccupancyPercent=15",
    "-XX:G1MixedGCLiveThresholdPercent=90",
    "-XX:G1RSetUpdatingPauseTimePercent=5",
    "-XX:SurvivorRatio=32",
    "-XX:+PerfDisableSharedMem",
    "-XX:MaxTenuringThreshold=1",
]

# JVM arguments used if no arguments are specified.
legacy_jvm_args = [
    {
        "rules": [{"action": "allow", "os": {"name": "osx"}}],
        "value": ["-XstartOnFirstThread"]
    },
    {
        "rules": [{"action": "allow", "os": {"name": "windows"}}],
        "value": "-XX:HeapDumpPath=MojangTricksIntelDriversForPerformance_javaw.exe_minecraft.exe.heapdump"
    },
    {
        "rules": [{"action": "allow", "os": {"name": "windows", "version": "^10\\."}}],
        "value": ["-Dos.name=Windows 10", "-Dos.version=10.0"]
    },
    "-Djava.library.path=${natives_directory}",
    "-Dminecraft.launcher.brand=${launcher_name}",
    "-Dminecraft.launcher.version=${launcher_version}",
    "-cp",
    "${classpath}"
]

_VAR_RE = re.compile(r"\$\{([^}]+)\}")


class LaunchOptions:
    """Options given by the player for a launch.
    """

    def __init__(self,
        version: str = "release", *,
        loader: Optional[LoaderSpec] = None,
        max_memory_mb: int = DEFAULT_MAX_MEMORY_MB,
        server_host: Optional[str] = None,
        server_port: int = DEFAULT_SERVER_PORT,
        resolution: Optional[Tuple[int, int]] = None,
        demo: bool = False,
        disable_multiplayer: bool = False,
        disable_chat: bool = False,
        extra_jvm_args: Optional[List[str]] = None,
        jvm_path: Optional[Path] = None,
        offline: bool = False,
        offline_username: Optional[str] = None,
        force_refresh: bool = False
    ) -> None:
        if max_memory_mb < 1:
            raise ValueError("max_memory_mb must be positive")
        self.version = version
        self.loader = loader
        self.max_memory_mb = max_memory_mb
        self.server_host = server_host
        self.server_port = server_port
        self.resolution = resolution
        self.demo = demo
        self.disable_multiplayer = disable_multiplayer
        self.disable_chat = disable_chat
        self.extra_jvm_args = [] if extra_jvm_args is None else extra_jvm_args
        self.jvm_path = jvm_path
        self.offline = offline
        self.offline_username = offline_username
        self.force_refresh = force_refresh

    def memory_args(self) -> List[str]:
        initial = min(INITIAL_MEMORY_CAP_MB, self.max_memory_mb)
        return [f"-Xmx{self.max_memory_mb}M", f"-Xms{initial}M"]


class LaunchPlan:
    """The full description of the process to start for running the game.
    """

    def __init__(self,
        jvm_path: Path,
        classpath: List[str],
        jvm_args: List[str],
        main_class: str,
        game_args: List[str],
        natives_dir: Path,
        work_dir: Path
    ) -> None:
        self.jvm_path = jvm_path
        self.classpath = classpath
        self.jvm_args = jvm_args
        self.main_class = main_class
        self.game_args = game_args
        self.natives_dir = natives_dir
        self.work_dir = work_dir

    def args(self) -> List[str]:
        """Return the full command line, starting with the JVM executable.
        """
        return [str(self.jvm_path), *self.jvm_args, self.main_class, *self.game_args]

    def __repr__(self) -> str:
        return f"<LaunchPlan {self.main_class} with {len(self.classpath)} classpath entries>"


class ArgumentBuilder:

    def __init__(self, context: Context, *,
        launcher_name: str = LAUNCHER_NAME,
        launcher_version: str = LAUNCHER_VERSION
    ) -> None:
        self.context = context
        self.launcher_name = launcher_name
        self.launcher_version = launcher_version

    def build(self,
        profile: VersionProfile,
        credential: Credential,
        options: LaunchOptions,
        natives_dir: Path,
        jvm_path: Path
    ) -> LaunchPlan:
        """Build the launch plan of the given profile.

        :raises ValueError: If some metadata is malformed.
        """

        context = self.context
        main_class = profile.main_class

        features = {
            "is_demo_user": options.demo,
            "has_custom_resolution": options.resolution is not None,
        }

        jvm_args: List[str] = []
        game_args: List[str] = []
        all_features: Set[str] = set()

        # Check if modern arguments are present (> 1.12.2).
        modern_args = profile.metadata.get("arguments")
        if modern_args is not None:

            if not isinstance(modern_args, dict):
                raise ValueError("metadata: /arguments must be an object")

            interpret_args(modern_args.get("jvm", []), features, jvm_args, "metadata: /arguments/jvm", all_features=all_features)
            interpret_args(modern_args.get("game", []), features, game_args, "metadata: /arguments/game", all_features=all_features)

        else:

            interpret_args(legacy_jvm_args, features, jvm_args, "<legacy_jvm_args>", all_features=all_features)

            # Append legacy game arguments, if available.
            legacy_game_args = profile.metadata.get("minecraftArguments")
            if legacy_game_args is not None:
                if not isinstance(legacy_game_args, str):
                    raise ValueError("metadata: /minecraftArguments must be a string")
                game_args.extend(arg for arg in legacy_game_args.split(" ") if len(arg))

        if not any("${classpath}" in arg for arg in jvm_args):
            jvm_args.extend(("-cp", "${classpath}"))

        # JVM argument for logging config
        logger_info = logging_config(context, profile)
        if logger_info is not None:
            logger_argument, logger_entry = logger_info
            if logger_entry.dst.is_file():
                jvm_args.append(logger_argument.replace("${path}", str(logger_entry.dst.absolute())))

        # JVM argument for launch wrapper JAR path
        if main_class == LAUNCHWRAPPER_MAIN_CLASS:
            jvm_args.append(f"-Dminecraft.client.jar={profile.jar_path.absolute()}")

        # The arguments do not support custom resolution.
        if options.resolution is not None and "has_custom_resolution" not in all_features:
            game_args.extend(("--width", str(options.resolution[0]), "--height", str(options.resolution[1])))

        if options.server_host is not None:
            game_args.extend(("--server", options.server_host, "--port", str(options.server_port)))

        if options.disable_multiplayer:
            game_args.append("--disableMultiplayer")
        if options.disable_chat:
            game_args.append("--disableChat")

        classpath = self._build_classpath(profile)
        replacements = self._build_replacements(profile, credential, options, natives_dir, classpath)

        return LaunchPlan(
            jvm_path,
            classpath,
            [*options.memory_args(), *G1_JVM_ARGS, *options.extra_jvm_args, *replace_list_vars(jvm_args, replacements)],
            main_class,
            list(replace_list_vars(game_args, replacements)),
            natives_dir,
            context.work_dir)

    def _build_classpath(self, profile: VersionProfile) -> List[str]:
        """Libraries are already deduplicated by key when resolved. Old versions seems
        to prefer having the main JAR first, modern versions last.
        """
        classpath = [str(lib.path.absolute()) for lib in profile.libraries]
        jar = str(profile.jar_path.absolute())
        if profile.modern:
            classpath.append(jar)
        else:
            classpath.insert(0, jar)
        return classpath

    def _build_replacements(self,
        profile: VersionProfile,
        credential: Credential,
        options: LaunchOptions,
        natives_dir: Path,
        classpath: List[str]
    ) -> Dict[str, str]:

        context = self.context

        game_assets = ""
        if profile.assets_index_version is not None:
            assets_index = read_assets_index(context, profile.assets_index_version)
            legacy_dir = None if assets_index is None else assets_index.legacy_dir(context)
            if legacy_dir is not None:
                game_assets = str(legacy_dir.absolute())

        replacements = {
            # Game
            "auth_player_name": credential.username,
            "version_name": profile.id,
            "library_directory": str(context.libraries_dir.absolute()),
            "game_directory": str(context.work_dir.absolute()),
            "assets_root": str(context.assets_dir.absolute()),
            "assets_index_name": profile.assets_index_version or "",
            "auth_uuid": credential.uuid,
            "auth_access_token": credential.format_token_argument(False),
            "auth_xuid": credential.xuid,
            "clientid": credential.client_id,
            "user_type": credential.user_type,
            "version_type": profile.version_type,
            # Game (legacy)
            "auth_session": credential.format_token_argument(True),
            "game_assets": game_assets,
            "user_properties": "{}",
            "auth_playerName": credential.username,
            "auth_accessToken": credential.format_token_argument(False),
            "auth_userType": credential.user_type,
            # JVM
            "natives_directory": str(natives_dir.absolute()),
            "launcher_name": self.launcher_name,
            "launcher_version": self.launcher_version,
            "classpath_separator": os.pathsep,
            "classpath": os.pathsep.join(classpath),
        }

        if options.resolution is not None:
            replacements["resolution_width"] = str(options.resolution[0])
            replacements["resolution_height"] = str(options.resolution[1])

        return replacements


def replace_vars(text: str, replacements: Dict[str, str]) -> str:
    """Replace all variables of the form `${foo}` in a string, unknown variables are
    kept verbatim.
    """
    return _VAR_RE.sub(lambda match: replacements.get(match.group(1), match.group(0)), text)


def replace_list_vars(text_list: List[str], replacements: Dict[str, str]) -> List[str]:
    """Call `replace_vars` on multiple texts in a list with the same replacements.
    """
    return [replace_vars(elt, replacements) for elt in text_list]
