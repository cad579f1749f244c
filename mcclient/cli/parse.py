from argparse import ArgumentParser, HelpFormatter, ArgumentTypeError
from pathlib import Path
import os

from ..standard import Context
from ..events import EventChannel
from ..launcher import Launcher
from ..fabric import LoaderSpec

from .output import Output
from .lang import get as _

from typing import Optional, Type, Tuple, List


# The following classes are only used for type checking and represent a typed namespace
# as produced by the arguments registered to the argument parser.

class RootNs:
    main_dir: Optional[Path]
    work_dir: Optional[Path]
    timeout: Optional[float]
    out_kind: str
    verbose: int
    app_id: Optional[str]
    redirect_port: int
    subcommand: Optional[str]
    # Initialized by main function after argument parsing.
    out: Output
    context: Context
    events: EventChannel
    launcher: Launcher

class StatusNs(RootNs):
    validate: bool
    force_refresh: bool

class ProvisionNs(RootNs):
    version: str
    loader: Optional[LoaderSpec]

class StartNs(ProvisionNs):
    offline: Optional[str]
    memory: int
    server: Optional[str]
    server_port: int
    resolution: Optional[Tuple[int, int]]
    demo: bool
    disable_mp: bool
    disable_chat: bool
    jvm: Optional[Path]
    jvm_args: Optional[str]
    force_refresh: bool


def register_arguments() -> ArgumentParser:
    parser = ArgumentParser(allow_abbrev=False, prog="mcclient", description=_("args"))
    parser.add_argument("--main-dir", help=_("args.main_dir"), type=Path)
    parser.add_argument("--work-dir", help=_("args.work_dir"), type=Path)
    parser.add_argument("--timeout", help=_("args.timeout"), type=float)
    parser.add_argument("--output", help=_("args.output"), dest="out_kind", choices=get_outputs(), default="human-color")
    parser.add_argument("--app-id", help=_("args.app_id"), default=os.environ.get("MCCLIENT_APP_ID"))
    parser.add_argument("--redirect-port", help=_("args.redirect_port"), type=int, default=12782, metavar="PORT")
    parser.add_argument("-v", dest="verbose", help=_("args.verbose"), action="count", default=0)
    register_subcommands(parser.add_subparsers(title="subcommands", dest="subcommand"))
    return parser


def register_subcommands(subparsers):
    subparsers.add_parser("login", help=_("args.login"))
    subparsers.add_parser("logout", help=_("args.logout"))
    register_status_arguments(subparsers.add_parser("status", help=_("args.status")))
    register_provision_arguments(subparsers.add_parser("provision", aliases=["install"], help=_("args.provision")))
    register_start_arguments(subparsers.add_parser("start", help=_("args.start")))


def register_status_arguments(parser: ArgumentParser):
    parser.add_argument("--validate", help=_("args.status.validate"), action="store_true")
    parser.add_argument("--force-refresh", help=_("args.status.force_refresh"), action="store_true")


def register_provision_arguments(parser: ArgumentParser):
    parser.add_argument("--loader", help=_("args.loader"), type=loader_from_str, metavar="LOADER")
    parser.add_argument("version", nargs="?", default="release", help=_("args.version"))


def register_start_arguments(parser: ArgumentParser):
    parser.formatter_class = new_help_formatter_class(40)
    parser.add_argument("--offline", help=_("args.start.offline"), nargs="?", const="", metavar="NAME")
    parser.add_argument("--memory", help=_("args.start.memory"), type=int, default=4096, metavar="MIB")
    parser.add_argument("-s", "--server", help=_("args.start.server"))
    parser.add_argument("-p", "--server-port", type=int, default=25565, help=_("args.start.server_port"), metavar="PORT")
    parser.add_argument("--resolution", help=_("args.start.resolution"), type=resolution_from_str)
    parser.add_argument("--demo", help=_("args.start.demo"), action="store_true")
    parser.add_argument("--disable-mp", help=_("args.start.disable_multiplayer"), action="store_true")
    parser.add_argument("--disable-chat", help=_("args.start.disable_chat"), action="store_true")
    parser.add_argument("--jvm", help=_("args.start.jvm"), type=Path)
    parser.add_argument("--jvm-args", help=_("args.start.jvm_args"), metavar="ARGS")
    parser.add_argument("--force-refresh", help=_("args.start.force_refresh"), action="store_true")
    register_provision_arguments(parser)


def new_help_formatter_class(max_help_position: int) -> Type[HelpFormatter]:

    class CustomHelpFormatter(HelpFormatter):
        def __init__(self, prog):
            super().__init__(prog, max_help_position=max_help_position)

    return CustomHelpFormatter


def get_outputs() -> List[str]:
    return ["human-color", "human", "machine"]


def loader_from_str(s: str) -> LoaderSpec:
    try:
        return LoaderSpec.from_str(s)
    except ValueError as error:
        raise ArgumentTypeError(str(error))


def resolution_from_str(s: str) -> Tuple[int, int]:
    parts = s.split("x")
    if len(parts) == 2:
        try:
            return (int(parts[0]), int(parts[1]))
        except ValueError:
            pass
    raise ArgumentTypeError(_("args.start.resolution.invalid", given=s))
