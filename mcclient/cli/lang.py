"""CLI messages.
"""

from mcclient.download import DownloadResultError
from mcclient.fetch import FetchError
from mcclient.jvm import JvmLoadedEvent

from typing import Optional


def get_raw(key: str, kwargs: Optional[dict], default: Optional[str] = None) -> str:
    """Get a message formatted using the given keyword formatting arguments.

    :param key: The key of the message.
    :param kwargs: The keyword formatting dictionary.
    :return: Formatted message, or the default value if not found. By default, the
    default value if the key itself.
    """
    try:
        return lang[key].format_map(kwargs or {})
    except KeyError:
        return key if default is None else default


def get(key: str, **kwargs) -> str:
    return get_raw(key, kwargs)


lang = {
    # Args root
    "args": "mcclient provisions, authenticates and launches Minecraft: Java Edition, "
        "the installation stays compatible with the official launcher's .minecraft.",
    "args.main_dir": "Set the main directory where libraries, assets and versions are installed.",
    "args.work_dir": "Set the working directory where the game runs and where the "
        "credential is stored, defaults to the main directory.",
    "args.timeout": "Set a global timeout (in decimal seconds) for network requests.",
    "args.output": "Set the output format of the launcher, defaults to human-color.",
    "args.verbose": "Enable verbose logging, -v for informations and -vv for debug.",
    "args.app_id": "Azure application id used for Microsoft authentication, defaults "
        "to the MCCLIENT_APP_ID environment variable.",
    "args.redirect_port": "Local port receiving the Microsoft authorization code.",
    # Args commands
    "args.login": "Authenticate with a Microsoft account and save the credential.",
    "args.logout": "Forget the saved credential.",
    "args.status": "Show the saved credential.",
    "args.status.validate": "Ensure that the credential is valid, refreshing it if needed.",
    "args.status.force_refresh": "Force refreshing the credential.",
    "args.provision": "Install a version, and optionally a mod loader, without starting it.",
    "args.start": "Start a version, installing it if needed.",
    "args.version": "Version identifier, or release|snapshot (default to release).",
    "args.loader": "Mod loader to install on top of the version: fabric[:<loader-version>] "
        "or quilt[:<loader-version>].",
    "args.start.offline": "Start in offline mode, with an optional username.",
    "args.start.memory": "Maximum memory of the game in MiB.",
    "args.start.server": "Server to connect to once started.",
    "args.start.server_port": "Port of the server to connect to.",
    "args.start.resolution": "Custom resolution of the game window, <width>x<height>.",
    "args.start.resolution.invalid": "Invalid resolution '{given}', expected <width>x<height>.",
    "args.start.demo": "Start the game in demo mode.",
    "args.start.disable_multiplayer": "Disable the multiplayer buttons.",
    "args.start.disable_chat": "Disable the online chat.",
    "args.start.jvm": "Path to the java executable to use.",
    "args.start.jvm_args": "Additional arguments given to the JVM.",
    "args.start.force_refresh": "Force refreshing the credential before starting.",
    # Common
    "echo": "{echo}",
    "cancelled": "Cancelled.",
    "error.failed": "{message}",
    "error.keyboard_interrupt": "Interrupted.",
    # Auth
    "auth.no_app_id": "No Azure application id, use --app-id or MCCLIENT_APP_ID.",
    "auth.opening_browser": "Opened the authentication page in your browser, waiting for authorization...",
    "auth.open_url": "Open this page to authenticate: {url}",
    "auth.close_tab_and_return": "Close this tab and return to the launcher.",
    "auth.invalid_state": "Incoherent authentication data, please retry.",
    "auth.logged_in": "Logged in as {username}",
    "auth.not_persisted": "Logged in as {username}, but the credential could not be saved",
    "auth.required": "Authentication required, run 'mcclient login'.",
    "auth.refreshed": "Credential of {username} refreshed",
    "auth.validated": "Credential of {username} is valid",
    "auth.cached": "Credential of {username} kept, could not be refreshed",
    "logout.success": "Logged out",
    "status.not_authenticated": "Not authenticated",
    "status.authenticated": "Authenticated as {username} ({uuid}), last refresh: {last_refresh}",
    # Provision
    "provision.version.loading": "Loading version {version}...",
    "provision.version.fetching": "Fetching version {version}...",
    "provision.version.loaded": "Loaded version {version}",
    "provision.loader.resolved": "Resolved {api} loader {loader_version} for {vanilla_version}",
    "provision.libraries.resolved": "Resolved {class_libs_count} libraries and {native_libs_count} native libraries",
    "provision.assets.resolved": "Resolved {count} assets for index {index_version}",
    "provision.done": "Installed {version}",
    "provision.failed": "Failed to install: {message}",
    # Download
    "download.start": "Download starting...",
    "download.progress": "Download: {count}/{total_count} {size:>8} @ {speed}",
    "download.error": "{name}: {message}",
    f"download.error.{DownloadResultError.CONNECTION}": "Connection error",
    f"download.error.{DownloadResultError.NOT_FOUND}": "Not found",
    f"download.error.{DownloadResultError.INVALID_SIZE}": "Invalid size",
    f"download.error.{DownloadResultError.INVALID_SHA1}": "Invalid SHA1",
    f"download.error.{DownloadResultError.TOO_MANY_REDIRECTS}": "Too many redirects",
    f"download.error.{FetchError.RESOURCE_MISSING}": "Missing, with no way to download it",
    f"download.error.{FetchError.WRITE_FAILED}": "Failed to write the file",
    # Start
    "start.starting": "Starting the game...",
    f"start.jvm.loaded.{JvmLoadedEvent.MOJANG}": "Installed Mojang Java {version}",
    f"start.jvm.loaded.{JvmLoadedEvent.BUILTIN}": "Found Java {version}",
    f"start.jvm.loaded.{JvmLoadedEvent.CUSTOM}": "Using the given Java {version}",
    "start.natives.error": "Natives of {name} not extracted: {message}",
    "start.started": "Game started (pid {pid})",
    "start.stopped": "Game stopped with code {exit_code}",
    "start.crashed": "Game crashed with code {exit_code}",
    "start.failed": "Failed to start: {message}",
}
