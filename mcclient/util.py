"""Small helpers shared by all modules: metadata merging, hashing, dates, versions and
Maven coordinates, and the `Result` of launcher operations.
"""

from datetime import datetime, timezone
import platform
import hashlib

from typing import Optional, Any, Tuple


# Name of the Java executable, Windows uses the variant without console.
jvm_bin_filename = "javaw.exe" if platform.system() == "Windows" else "java"


def merge_dict(dst: dict, other: dict) -> None:
    """Merge the metadata of a parent version (`other`) into the metadata of its child
    (`dst`). The child always wins on scalar values and on values of different types,
    nested objects are merged recursively and lists are concatenated, the parent's items
    first.
    """

    for key, value in other.items():
        if key not in dst:
            dst[key] = value
            continue
        current = dst[key]
        if isinstance(current, dict) and isinstance(value, dict):
            merge_dict(current, value)
        elif isinstance(current, list) and isinstance(value, list):
            dst[key] = value + current


def calc_input_sha1(input_stream, *, buffer_len: int = 8192) -> str:
    """Hex SHA-1 of the remaining content of a binary stream supporting `readinto`.
    """
    digest = hashlib.sha1()
    buffer = memoryview(bytearray(buffer_len))
    while True:
        read_len = input_stream.readinto(buffer)
        if not read_len:
            return digest.hexdigest()
        digest.update(buffer[:read_len])


def utc_now() -> datetime:
    """Return the current timezone-aware UTC date time.
    """
    return datetime.now(timezone.utc)


def parse_utc_date(raw: Any) -> Optional[datetime]:
    """Parse an ISO-8601 date time string, naive dates are considered UTC. Any invalid
    value (including non-string) gives none.
    """
    if not isinstance(raw, str) or not len(raw):
        return None
    try:
        date = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if date.tzinfo is None:
        date = date.replace(tzinfo=timezone.utc)
    return date


def parse_version_tuple(version: str) -> tuple:
    """Parse the leading numeric components of a dotted version string, stopping at the
    first component that is not purely numeric. For example `9.8` gives `(9, 8)` and
    `9.7.1-SNAPSHOT` gives `(9, 7)`.
    """
    parts = []
    for part in version.split("."):
        if not part.isdigit():
            break
        parts.append(int(part))
    return tuple(parts)


class LibrarySpecifier:
    """Maven coordinate of a library, `group:artifact:version[:classifier][@extension]`.
    """

    __slots__ = "group", "artifact", "version", "classifier", "extension"

    def __init__(self, group: str, artifact: str, version: str,
        classifier: Optional[str] = None,
        extension: str = "jar"
    ) -> None:
        self.group = group
        self.artifact = artifact
        self.version = version
        self.classifier = classifier
        self.extension = extension

    @classmethod
    def from_str(cls, s: str) -> "LibrarySpecifier":

        coordinate, at, extension = s.partition("@")
        if not at:
            extension = "jar"
        elif not len(extension):
            raise ValueError(f"invalid library specifier {s!r}: empty extension")

        parts = coordinate.split(":", 3)
        if len(parts) < 3:
            raise ValueError(f"invalid library specifier {s!r}: expected at least group, artifact and version")

        classifier = parts[3] if len(parts) == 4 else None
        return cls(parts[0], parts[1], parts[2], classifier, extension)

    def _fields(self) -> Tuple[str, str, str, Optional[str], str]:
        return self.group, self.artifact, self.version, self.classifier, self.extension

    def copy(self) -> "LibrarySpecifier":
        return LibrarySpecifier(*self._fields())

    def file_path(self) -> str:
        """Relative path of the library in a Maven repository, always '/'-separated
        so it's valid both as URL path and file path. For example `com.foo:bar:1.0@zip`
        gives `com/foo/bar/1.0/bar-1.0.zip`.
        """
        file_name = f"{self.artifact}-{self.version}"
        if self.classifier is not None:
            file_name += f"-{self.classifier}"
        return "/".join((*self.group.split("."), self.artifact, self.version, f"{file_name}.{self.extension}"))

    def __str__(self) -> str:
        s = ":".join((self.group, self.artifact, self.version))
        if self.classifier is not None:
            s += f":{self.classifier}"
        if self.extension != "jar":
            s += f"@{self.extension}"
        return s

    def __repr__(self) -> str:
        return f"<LibrarySpecifier {self}>"

    def __eq__(self, other) -> bool:
        return isinstance(other, LibrarySpecifier) and self._fields() == other._fields()

    def __hash__(self) -> int:
        return hash(self._fields())


class Result:
    """Outcome of an exposed launcher operation. Operations never raise for expected
    failures, they return a result with `success` set to false, an `error` message
    and `requires_auth` set when the player must authenticate interactively again.

    Operation-specific values are given as extra keyword arguments and are available as
    attributes.
    """

    def __init__(self, success: bool, *,
        error: Optional[str] = None,
        requires_auth: bool = False,
        **values: Any
    ) -> None:
        self.success = success
        self.error = error
        self.requires_auth = requires_auth
        self.__dict__.update(values)

    @classmethod
    def ok(cls, **values: Any) -> "Result":
        return cls(True, **values)

    @classmethod
    def failure(cls, error: str, *, requires_auth: bool = False, **values: Any) -> "Result":
        return cls(False, error=error, requires_auth=requires_auth, **values)

    def __bool__(self) -> bool:
        return self.success

    def __repr__(self) -> str:
        values = ", ".join(f"{k}: {v!r}" for k, v in self.__dict__.items())
        return f"<Result {values}>"
