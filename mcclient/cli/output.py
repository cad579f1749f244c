"""Output formats of the CLI: a human one, rewriting the current task line in place,
and a machine one, printing one escaped record per line.
"""

from .lang import get_raw as _raw

import shutil
import time
import sys
import re

from typing import Optional


class Output:
    """Abstract output of the CLI.
    """

    def task(self, state: Optional[str], key: Optional[str], **kwargs) -> None:
        """Update the current task, with an optional state label and a message given
        by its language key. A new task is started if none is active.
        """
        raise NotImplementedError

    def finish(self) -> None:
        """Terminate the current task, if any.
        """
        raise NotImplementedError

    def done(self, state: Optional[str], key: Optional[str], **kwargs) -> None:
        """Update the current task for the last time.
        """
        self.task(state, key, **kwargs)
        self.finish()

    def print(self, text: str) -> None:
        """Print raw text, typically lines of the game's output, no new line added.
        """
        raise NotImplementedError


ANSI_RESET = "\033[0m"
ANSI_RED = "\033[31m"
ANSI_GREEN = "\033[92m"
ANSI_YELLOW = "\033[33m"
ANSI_BLUE = "\033[34m"

# Width of the "[ STATE] " prefix.
STATE_WIDTH = 9
# Terminal width is only queried again after this delay.
TERM_WIDTH_REFRESH_SECONDS = 1.0


class HumanOutput(Output):

    state_colors = {
        "OK": ANSI_GREEN,
        "FAILED": ANSI_RED,
        "WARN": ANSI_YELLOW,
        "INFO": ANSI_BLUE,
        "HALT": ANSI_YELLOW,
    }

    # Game output lines are colored by their log level.
    level_re = re.compile(r"\b(FATAL|ERROR|WARN)\b")
    level_colors = {"FATAL": ANSI_RED, "ERROR": ANSI_RED, "WARN": ANSI_YELLOW}

    def __init__(self, color: bool) -> None:
        self.color = color
        self._term_width = 0
        self._term_width_time = 0.0
        # Length of the message currently displayed, none if no task is active.
        self._line_len: Optional[int] = None

    def term_width(self) -> int:
        now = time.monotonic()
        if now - self._term_width_time > TERM_WIDTH_REFRESH_SECONDS:
            self._term_width_time = now
            self._term_width = shutil.get_terminal_size().columns
        return self._term_width

    def _format_state(self, state: Optional[str]) -> str:
        if state is None:
            return " " * STATE_WIDTH
        color = self.state_colors.get(state) if self.color else None
        if color is None:
            return f"[{state:^6s}] "
        return f"[{color}{state:^6s}{ANSI_RESET}] "

    def task(self, state: Optional[str], key: Optional[str], **kwargs) -> None:

        width = self.term_width()
        if width < STATE_WIDTH + 11:
            return

        msg = "" if key is None else _raw(key, kwargs)
        max_len = width - STATE_WIDTH
        if len(msg) > max_len:
            msg = msg[:max_len - 3] + "..."

        # Pad with spaces to erase the previous, longer, message.
        padding = max(0, (self._line_len or 0) - len(msg))
        sys.stdout.write(f"\r{self._format_state(state)}{msg}{' ' * padding}")
        sys.stdout.flush()
        self._line_len = len(msg)

    def finish(self) -> None:
        if self._line_len is not None:
            sys.stdout.write("\n")
            sys.stdout.flush()
            self._line_len = None

    def print(self, text: str) -> None:
        match = self.level_re.search(text) if self.color else None
        if match is None:
            sys.stdout.write(text)
        else:
            sys.stdout.write(f"{self.level_colors[match.group(1)]}{text}{ANSI_RESET}")
        sys.stdout.flush()


class MachineOutput(Output):
    """Records are `name:arg,arg,key=value`, with commas and new lines escaped with a
    backslash.
    """

    escapes = {"\n": "\\n", "\r": "\\r", ",": "\\,"}
    escape_re = re.compile("[\n\r,]")

    @classmethod
    def escape(cls, s: str) -> str:
        return cls.escape_re.sub(lambda m: cls.escapes[m.group()], s)

    def record(self, name: str, *args: str, **kwargs) -> None:
        fields = [*args, *(f"{k}={v}" for k, v in kwargs.items())]
        print(f"{name}:{','.join(map(self.escape, fields))}")

    def task(self, state: Optional[str], key: Optional[str], **kwargs) -> None:
        self.record("task", str(state), str(key), **kwargs)

    def finish(self) -> None:
        pass

    def print(self, text: str) -> None:
        self.record("print", text)
