"""Command line front end of the launcher.
"""

from http.server import HTTPServer, BaseHTTPRequestHandler
from urllib import parse as url_parse
import webbrowser
import logging
import socket
import time
import sys

from .parse import register_arguments, RootNs, StatusNs, ProvisionNs, StartNs
from .output import Output, HumanOutput, MachineOutput
from .util import format_date, format_number
from .lang import get as _

from .. import LAUNCHER_NAME, LAUNCHER_VERSION
from ..standard import Context
from ..auth import CredentialManager, MicrosoftAuthService, IdentityPrompt
from ..download import ThreadedDownloader
from ..launcher import Launcher
from ..launch import LaunchOptions
from ..events import EventChannel
from ..http import RetryPolicy, FILE_TIMEOUT
from ..resolve import VersionLoadingEvent, VersionFetchingEvent, VersionLoadedEvent, \
    LoaderResolveEvent, LibrariesResolvedEvent
from ..fetch import FetchReport, AssetsResolveEvent, DownloadStartEvent, \
    DownloadProgressEvent, DownloadCompleteEvent
from ..process import ClientStartedEvent, ClientStoppedEvent, ClientOutputEvent
from ..jvm import JvmLoadedEvent

from typing import cast, Optional, List, Dict, Callable, Any


EXIT_OK = 0
EXIT_FAILURE = 1

CommandHandler = Callable[[Any], int]


def main(args: Optional[List[str]] = None):
    """Main entry point of the CLI. This function parses the input arguments and
    dispatches to the command handler.
    """

    parser = register_arguments()
    ns: RootNs = cast(RootNs, parser.parse_args(sys.argv[1:] if args is None else args))

    handler = get_command_handlers().get(ns.subcommand)
    if handler is None:
        parser.print_help()
        sys.exit(EXIT_FAILURE)

    setup_logging(ns.verbose)

    if ns.timeout is not None:
        socket.setdefaulttimeout(ns.timeout)

    # Setup common objects in the namespace.
    ns.out = get_output(ns.out_kind)
    ns.context = Context(ns.main_dir, ns.work_dir)
    ns.events = EventChannel()
    ns.launcher = new_launcher(ns)

    sys.exit(cmd(handler, ns))


def setup_logging(verbose: int) -> None:
    level = logging.WARNING if verbose <= 0 else logging.INFO if verbose == 1 else logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def get_output(kind: str) -> Output:
    """Internal function that construct the output depending on its kind.
    The kind is constrained by choices set to the arguments parser.
    """
    if kind == "human-color":
        return HumanOutput(True)
    elif kind == "human":
        return HumanOutput(False)
    elif kind == "machine":
        return MachineOutput()
    else:
        raise ValueError()


def get_command_handlers() -> Dict[str, CommandHandler]:
    return {
        "login": cmd_login,
        "logout": cmd_logout,
        "status": cmd_status,
        "provision": cmd_provision,
        "install": cmd_provision,
        "start": cmd_start,
    }


def new_launcher(ns: RootNs) -> Launcher:

    retry = RetryPolicy()
    redirect_uri = f"http://localhost:{ns.redirect_port}/code"
    service = MicrosoftAuthService(ns.app_id or "", redirect_uri, retry=retry)
    credentials = CredentialManager(ns.context.credential_file(), service, events=ns.events)
    downloader = ThreadedDownloader(retry=retry, timeout=ns.timeout or FILE_TIMEOUT)

    return Launcher(ns.context, credentials,
        downloader=downloader,
        events=ns.events,
        retry=retry)


def cmd(handler: CommandHandler, ns: RootNs) -> int:
    """Generic command handler that launch the given handler with the given namespace,
    it handles error in order to pretty print them.
    """

    try:
        return handler(ns)

    except KeyboardInterrupt:
        ns.out.finish()
        ns.out.done("HALT", "error.keyboard_interrupt")

    except OSError as error:
        ns.out.done("FAILED", "error.failed", message=str(error))

    return EXIT_FAILURE


def cmd_login(ns: RootNs) -> int:

    if not ns.app_id:
        ns.out.done("FAILED", "auth.no_app_id")
        return EXIT_FAILURE

    result = ns.launcher.authenticate(CliIdentityPrompt(ns))
    if not result.success:
        ns.out.done("FAILED", "error.failed", message=result.error)
        return EXIT_FAILURE

    ns.out.done("OK", "auth.logged_in" if result.persisted else "auth.not_persisted", username=result.username)
    return EXIT_OK


def cmd_logout(ns: RootNs) -> int:
    result = ns.launcher.logout()
    if not result.success:
        ns.out.done("FAILED", "error.failed", message=result.error)
        return EXIT_FAILURE
    ns.out.done("OK", "logout.success")
    return EXIT_OK


def cmd_status(ns: StatusNs) -> int:

    if ns.validate or ns.force_refresh:
        if not print_ensure_valid(ns, ns.force_refresh):
            return EXIT_FAILURE
    else:
        ns.launcher.credentials.load()

    status = ns.launcher.credentials.status()
    if not status.authenticated:
        ns.out.done("INFO", "status.not_authenticated")
        return EXIT_FAILURE

    ns.out.done("INFO", "status.authenticated",
        username=status.username,
        uuid=status.uuid,
        last_refresh=format_date(status.last_refresh))
    return EXIT_OK


def cmd_provision(ns: ProvisionNs) -> int:

    unsubscribe = ns.events.subscribe_all(ProvisionWatcher(ns).handlers())
    try:
        result = ns.launcher.provision(ns.version, ns.loader)
    finally:
        unsubscribe()

    if not result.success:
        print_report_errors(ns, getattr(result, "report", None))
        ns.out.done("FAILED", "provision.failed", message=result.error)
        return EXIT_FAILURE

    print_report_errors(ns, result.report)
    ns.out.done("OK", "provision.done", version=result.version)
    return EXIT_OK


def cmd_start(ns: StartNs) -> int:

    options = LaunchOptions(ns.version,
        loader=ns.loader,
        max_memory_mb=ns.memory,
        server_host=ns.server,
        server_port=ns.server_port,
        resolution=ns.resolution,
        demo=ns.demo,
        disable_multiplayer=ns.disable_mp,
        disable_chat=ns.disable_chat,
        extra_jvm_args=None if ns.jvm_args is None else ns.jvm_args.split(),
        jvm_path=ns.jvm,
        offline=ns.offline is not None,
        offline_username=ns.offline or None,
        force_refresh=ns.force_refresh)

    handlers = ProvisionWatcher(ns).handlers()
    handlers.update({
        JvmLoadedEvent: lambda e: ns.out.done("OK", f"start.jvm.loaded.{e.kind}", version=e.version or "?"),
        ClientStartedEvent: lambda e: ns.out.done("OK", "start.started", pid=e.pid),
        ClientStoppedEvent: lambda e: ns.out.done("WARN" if e.crashed else "INFO",
            "start.crashed" if e.crashed else "start.stopped", exit_code=e.exit_code),
        ClientOutputEvent: lambda e: ns.out.print(f"{e.line}\n"),
    })

    unsubscribe = ns.events.subscribe_all(handlers)
    try:

        result = ns.launcher.launch(options)
        if not result.success:
            print_report_errors(ns, getattr(result, "report", None))
            ns.out.done("FAILED", "auth.required" if result.requires_auth else "start.failed", message=result.error)
            return EXIT_FAILURE

        print_report_errors(ns, result.report)
        for path, error in result.natives.errors:
            ns.out.done("WARN", "start.natives.error", name=path.name, message=str(error))

        if ns.verbose >= 1:
            ns.out.print(" ".join(result.plan.args()) + "\n")

        try:
            while ns.launcher.status().running:
                time.sleep(1)
        except KeyboardInterrupt:
            ns.launcher.stop()
            raise

    finally:
        unsubscribe()

    return EXIT_OK


def print_ensure_valid(ns: RootNs, force_refresh: bool) -> bool:

    result = ns.launcher.ensure_valid(force_refresh)
    if not result.success:
        ns.out.done("FAILED", "auth.required" if result.requires_auth else "error.failed", message=result.error)
        return False

    credential = ns.launcher.credentials.credential
    username = "" if credential is None else credential.username
    key = "auth.refreshed" if result.refreshed else "auth.cached" if result.used_cache else "auth.validated"
    ns.out.done("OK", key, username=username)
    return True


def print_report_errors(ns: RootNs, report: Optional[FetchReport]) -> None:
    if report is None:
        return
    for error in report.errors:
        ns.out.done(None, "download.error", name=error.name, message=_(f"download.error.{error.code}"))


class CliIdentityPrompt(IdentityPrompt):
    """Open the authorization page in the browser and receive the authorization code on
    a local HTTP server, at the registered redirect URI.
    """

    def __init__(self, ns: RootNs) -> None:
        self.ns = ns

    def prompt(self, url: str, state: str) -> Optional[str]:

        ns = self.ns

        if webbrowser.open(url):
            ns.out.done("..", "auth.opening_browser")
        else:
            ns.out.done("..", "auth.open_url", url=url)

        with AuthServer(ns.redirect_port) as server:
            try:
                while not server.done:
                    server.handle_request()
            except KeyboardInterrupt:
                ns.out.done("FAILED", "cancelled")
                return None

        if server.state != state:
            ns.out.done("FAILED", "auth.invalid_state")
            return None

        return server.code


class AuthServer(HTTPServer):

    def __init__(self, port: int) -> None:
        super().__init__(("localhost", port), AuthRequestHandler)
        self.timeout = 0.5
        self.done = False
        self.code: Optional[str] = None
        self.state: Optional[str] = None


class AuthRequestHandler(BaseHTTPRequestHandler):

    server_version = f"{LAUNCHER_NAME}/{LAUNCHER_VERSION}"

    def log_message(self, _format: str, *args: Any):
        return

    def send_auth_response(self, status: int, msg: str):
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.end_headers()
        self.wfile.write(f"{msg}\n\n{_('auth.close_tab_and_return')}".encode())
        self.wfile.flush()

    def do_GET(self):

        auth_server = cast(AuthServer, self.server)
        url = url_parse.urlparse(self.path)
        if url.path != "/code":
            self.send_auth_response(404, "Unexpected page.")
            return

        qs = url_parse.parse_qs(url.query)
        auth_server.done = True
        if "code" in qs and "state" in qs:
            auth_server.code = qs["code"][0]
            auth_server.state = qs["state"][0]
            self.send_auth_response(200, "Authorized.")
        elif "error" in qs:
            description = qs.get("error_description", [""])[0]
            self.send_auth_response(400, f"Error: {description} ({qs['error'][0]}).")
        else:
            self.send_auth_response(400, "Missing parameters.")


class ProvisionWatcher:
    """Print provisioning progress from the events of the launcher.
    """

    def __init__(self, ns: RootNs) -> None:
        self.ns = ns
        self.entries_count = 0
        self.speeds: Dict[int, float] = {}
        self.size = 0

    def handlers(self) -> Dict[type, Callable[[Any], None]]:

        out = self.ns.out

        return {
            VersionLoadingEvent: lambda e: out.task("..", "provision.version.loading", version=e.version),
            VersionFetchingEvent: lambda e: out.task("..", "provision.version.fetching", version=e.version),
            VersionLoadedEvent: lambda e: out.done("OK", "provision.version.loaded", version=e.version),
            LoaderResolveEvent: lambda e: out.done("OK", "provision.loader.resolved",
                api=e.loader.api.name, loader_version=e.loader_version, vanilla_version=e.vanilla_version),
            LibrariesResolvedEvent: lambda e: out.done("OK", "provision.libraries.resolved",
                class_libs_count=e.class_libs_count, native_libs_count=e.native_libs_count),
            AssetsResolveEvent: lambda e: out.done("OK", "provision.assets.resolved",
                index_version=e.index_version, count=e.count),
            DownloadStartEvent: self.download_start,
            DownloadProgressEvent: self.download_progress,
            DownloadCompleteEvent: self.download_complete,
        }

    def download_start(self, e: DownloadStartEvent) -> None:
        self.entries_count = e.entries_count
        self.speeds.clear()
        self.size = 0
        self.ns.out.task("..", "download.start")

    def download_progress(self, e: DownloadProgressEvent) -> None:

        self.speeds[e.thread_id] = e.speed
        self.size += e.size

        total_count = str(e.total_count)
        self.ns.out.task("..", "download.progress",
            count=f"{e.count:{len(total_count)}}",
            total_count=total_count,
            size=f"{format_number(self.size)}o",
            speed=f"{format_number(sum(self.speeds.values()))}o/s")

    def download_complete(self, e: DownloadCompleteEvent) -> None:
        self.ns.out.done("OK" if e.report.success else "FAILED", None)
