"""Batch download of files. A `DownloadList` is filled with entries and given to a
`Downloader`, which is chosen once at construction: the `ThreadedDownloader` downloads
on a bounded pool of threads while the `SerialDownloader` downloads in the calling
thread. Both verify size and SHA-1 of every file and retry transient failures.
"""

from http.client import HTTPConnection, HTTPSConnection, HTTPResponse, HTTPException
from threading import Thread
from collections import deque
from pathlib import Path
from queue import Queue
import urllib.parse
import logging
import hashlib
import time

from .http import RetryPolicy, DEFAULT_RETRY, FILE_TIMEOUT, ssl_context

from typing import Optional, Dict, List, Tuple, Iterator, Callable


logger = logging.getLogger(__name__)

# Default number of download threads, downloads are mostly small files so a small
# pool is enough to saturate the network.
DEFAULT_THREADS_COUNT = 8
DEFAULT_MAX_REDIRECTS = 5
# Entries without known size are sorted as if they had this size.
UNKNOWN_SIZE_WEIGHT = 1024 * 1024

REDIRECT_STATUSES = (301, 302, 303, 307, 308)
# Statuses worth retrying, any other non-2xx status fails the entry immediately.
RETRY_STATUSES = (408, 429)


class DownloadEntry:
    """A file to download from an URL to its destination, with optional expected size
    and SHA-1. The name is only used for reporting, the URL by default.
    """

    __slots__ = "url", "size", "sha1", "dst", "name", "executable"

    def __init__(self,
        url: str,
        dst: Path, *,
        size: Optional[int] = None,
        sha1: Optional[str] = None,
        name: Optional[str] = None,
        executable: bool = False
    ) -> None:
        self.url = url
        self.dst = dst
        self.size = size
        self.sha1 = sha1
        self.name = name or url
        self.executable = executable

    def _identity(self) -> tuple:
        return self.url, self.dst, self.size, self.sha1

    def __eq__(self, other) -> bool:
        return isinstance(other, DownloadEntry) and self._identity() == other._identity()

    def __hash__(self) -> int:
        # Identity fields must not be modified while the entry is in a set or dict.
        return hash(self._identity())

    def __repr__(self) -> str:
        return f"<DownloadEntry {self.name}>"


class _DownloadEntry:
    """An entry ready to be requested, with its URL already split. The entry that was
    added to the list is kept through redirections, results always refer to it.
    """

    __slots__ = "https", "host", "target", "url", "entry", "redirects"

    def __init__(self, https: bool, host: str, target: str, url: str, entry: DownloadEntry, redirects: int = 0) -> None:
        self.https = https
        self.host = host
        self.target = target
        self.url = url
        self.entry = entry
        self.redirects = redirects

    @classmethod
    def from_url(cls, url: str, entry: DownloadEntry, redirects: int = 0) -> "_DownloadEntry":

        parsed = urllib.parse.urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise ValueError(f"unsupported scheme '{parsed.scheme}://' from url {url}")

        target = parsed.path or "/"
        if parsed.query:
            target = f"{target}?{parsed.query}"

        return cls(parsed.scheme == "https", parsed.netloc, target, url, entry, redirects)


class DownloadResult:
    """Base class of the results yielded by `Downloader.download`.
    """
    __slots__ = "thread_id", "entry"
    def __init__(self, thread_id: int, entry: DownloadEntry) -> None:
        self.thread_id = thread_id
        self.entry = entry


class DownloadResultProgress(DownloadResult):
    """Bytes received for an entry, `done` is true once the file is complete and
    verified.
    """
    __slots__ = "size", "speed", "done"
    def __init__(self, thread_id: int, entry: DownloadEntry, size: int, speed: float, done: bool) -> None:
        super().__init__(thread_id, entry)
        self.size = size
        self.speed = speed
        self.done = done


class DownloadResultError(DownloadResult):
    """Final failure of an entry, with its error code. The exception is given in
    `origin` for connection errors.
    """

    CONNECTION = "connection"
    NOT_FOUND = "not_found"
    INVALID_SIZE = "invalid_size"
    INVALID_SHA1 = "invalid_sha1"
    TOO_MANY_REDIRECTS = "too_many_redirects"

    __slots__ = "code", "origin"

    def __init__(self, thread_id: int, entry: DownloadEntry, code: str, origin: Optional[Exception]) -> None:
        super().__init__(thread_id, entry)
        self.code = code
        self.origin = origin


class DownloadList:
    """Entries to download together, with their count and total known size.
    """

    __slots__ = "entries", "count", "size"

    def __init__(self) -> None:
        self.entries: List[_DownloadEntry] = []
        self.count = 0
        self.size = 0

    def clear(self) -> None:
        self.entries.clear()
        self.count = 0
        self.size = 0

    def add(self, entry: DownloadEntry, *, verify: bool = False) -> bool:
        """Add an entry to the list. With `verify`, an entry whose destination already
        exists with the expected size (or any size if unknown) is not added.

        :return: True if the entry has been added.
        :raises ValueError: If the URL scheme isn't HTTP(S).
        """

        if verify and entry.dst.is_file():
            if entry.size is None or entry.dst.stat().st_size == entry.size:
                return False

        self.entries.append(_DownloadEntry.from_url(entry.url, entry))
        self.count += 1
        self.size += entry.size or 0
        return True


class Downloader:
    """Interface of downloaders, the implementation is selected once at construction
    of the components that download files.
    """

    def download(self, dl: DownloadList, *,
        partial_progress: bool = False
    ) -> Iterator[Tuple[int, DownloadResult]]:
        """Download all entries of the list.

        :param partial_progress: Also yield progress of incomplete files, otherwise
        every progress yielded is done.
        :return: An iterator of `(final_results_count, result)`. Every entry gives
        exactly one final result, either a done progress or an error.
        """
        raise NotImplementedError


def _is_final(result: DownloadResult) -> bool:
    return not isinstance(result, DownloadResultProgress) or result.done


def _sorted_entries(dl: DownloadList) -> List[_DownloadEntry]:
    # Biggest files first so that the pool stays busy until the end.
    return sorted(dl.entries, key=lambda e: e.entry.size or UNKNOWN_SIZE_WEIGHT, reverse=True)


class ThreadedDownloader(Downloader):
    """Download entries on a bounded pool of threads, each thread keeping persistent
    connections to the hosts it already connected to.
    """

    def __init__(self, threads_count: int = DEFAULT_THREADS_COUNT, *,
        retry: Optional[RetryPolicy] = None,
        timeout: float = FILE_TIMEOUT,
        max_redirects: int = DEFAULT_MAX_REDIRECTS
    ) -> None:
        if threads_count < 1:
            raise ValueError("threads_count must be at least 1")
        self.threads_count = threads_count
        self.retry = retry or DEFAULT_RETRY
        self.timeout = timeout
        self.max_redirects = max_redirects

    def download(self, dl: DownloadList, *,
        partial_progress: bool = False
    ) -> Iterator[Tuple[int, DownloadResult]]:

        entries = _sorted_entries(dl)
        if not len(entries):
            return

        threads_count = min(len(entries), self.threads_count)
        entries_queue: Queue = Queue()
        result_queue: Queue = Queue()

        for thread_id in range(threads_count):
            worker = _DownloadWorker(thread_id, self.retry, self.timeout, self.max_redirects, partial_progress)
            Thread(target=_download_thread,
                args=(worker, entries_queue, result_queue),
                daemon=True,
                name=f"Download Thread {thread_id}").start()

        for entry in entries:
            entries_queue.put(entry)

        final_count = 0
        try:
            while final_count < len(entries):
                result = result_queue.get()
                if isinstance(result, _DownloadThreadCrash):
                    raise RuntimeError(f"download thread {result.thread_id} crashed") from result.origin
                if _is_final(result):
                    final_count += 1
                yield final_count, result
        finally:
            # One stop sentinel per thread, daemon threads are not joined.
            for _ in range(threads_count):
                entries_queue.put(None)


class SerialDownloader(Downloader):
    """Download entries one after the other in the calling thread.
    """

    def __init__(self, *,
        retry: Optional[RetryPolicy] = None,
        timeout: float = FILE_TIMEOUT,
        max_redirects: int = DEFAULT_MAX_REDIRECTS
    ) -> None:
        self.retry = retry or DEFAULT_RETRY
        self.timeout = timeout
        self.max_redirects = max_redirects

    def download(self, dl: DownloadList, *,
        partial_progress: bool = False
    ) -> Iterator[Tuple[int, DownloadResult]]:

        pending = deque(_sorted_entries(dl))
        worker = _DownloadWorker(0, self.retry, self.timeout, self.max_redirects, partial_progress)
        results: deque = deque()
        final_count = 0

        try:
            while len(pending):
                # Redirections are appended to the pending entries.
                worker.process(pending.popleft(), results.append, pending.append)
                while len(results):
                    result = results.popleft()
                    if _is_final(result):
                        final_count += 1
                    yield final_count, result
        finally:
            worker.close()


class _DownloadThreadCrash:
    """Sent by a download thread that stopped on an unexpected exception.
    """
    __slots__ = "thread_id", "origin"
    def __init__(self, thread_id: int, origin: Exception) -> None:
        self.thread_id = thread_id
        self.origin = origin


def _download_thread(worker: "_DownloadWorker", entries_queue: Queue, result_queue: Queue) -> None:
    try:
        while True:
            raw_entry: Optional[_DownloadEntry] = entries_queue.get()
            if raw_entry is None:
                break
            worker.process(raw_entry, result_queue.put, entries_queue.put)
    except Exception as e:
        result_queue.put(_DownloadThreadCrash(worker.thread_id, e))
    finally:
        worker.close()


class _DownloadWorker:
    """Download logic shared by all downloaders, one worker is used by a single thread
    and owns its connections and its read buffer.
    """

    buffer_cap = 65536
    # Speed is an exponential moving average updated at this interval.
    speed_interval = 0.25
    speed_smoothing = 0.3

    def __init__(self, thread_id: int, retry: RetryPolicy, timeout: float,
        max_redirects: int, partial_progress: bool
    ) -> None:

        self.thread_id = thread_id
        self.retry = retry
        self.timeout = timeout
        self.max_redirects = max_redirects
        self.partial_progress = partial_progress

        # Persistent connections, by (https, host).
        self.connections: Dict[Tuple[bool, str], HTTPConnection] = {}
        self.ctx = ssl_context()
        self.buffer = memoryview(bytearray(self.buffer_cap))

        self.speed = 0.0
        self._speed_time = 0.0
        self._speed_total = 0
        self._speed_last_total = 0

    def close(self) -> None:
        for conn in self.connections.values():
            conn.close()
        self.connections.clear()

    def process(self, raw_entry: _DownloadEntry,
        emit: Callable[[DownloadResult], None],
        requeue: Callable[[_DownloadEntry], None]
    ) -> None:
        """Download a single entry, emitting its results. A redirection is given back to
        the requeue function, in such case no final result is emitted here.
        """

        entry = raw_entry.entry
        error: Optional[str] = None
        origin: Optional[Exception] = None

        for attempt in range(1, self.retry.max_attempts + 1):

            if attempt > 1:
                self.retry.wait(attempt - 1)

            conn = self._connection(raw_entry)
            try:
                res = self._request(conn, raw_entry)
                if res.status == 200:
                    error = self._receive(res, entry, emit)
                    if error is None:
                        return
                    origin = None
                elif res.status in REDIRECT_STATUSES and res.headers.get("location"):
                    if raw_entry.redirects >= self.max_redirects:
                        emit(DownloadResultError(self.thread_id, entry, DownloadResultError.TOO_MANY_REDIRECTS, None))
                    else:
                        redirect_url = urllib.parse.urljoin(raw_entry.url, res.headers["location"])
                        requeue(_DownloadEntry.from_url(redirect_url, entry, raw_entry.redirects + 1))
                    return
                else:
                    error, origin = DownloadResultError.NOT_FOUND, None
                    # Client errors are terminal, only server errors are retried.
                    if 400 <= res.status < 500 and res.status not in RETRY_STATUSES:
                        logger.debug("download of %s failed with status %d", entry.name, res.status)
                        break
            except (OSError, HTTPException) as e:
                # The connection may be in a broken state, a new one is created.
                self._drop_connection(raw_entry)
                error, origin = DownloadResultError.CONNECTION, e
                _unlink_partial(entry.dst)

        assert error is not None
        logger.debug("download of %s failed: %s", entry.name, error)
        emit(DownloadResultError(self.thread_id, entry, error, origin))

    def _connection(self, raw_entry: _DownloadEntry) -> HTTPConnection:
        key = (raw_entry.https, raw_entry.host)
        conn = self.connections.get(key)
        if conn is None:
            if raw_entry.https:
                conn = HTTPSConnection(raw_entry.host, context=self.ctx, timeout=self.timeout)
            else:
                conn = HTTPConnection(raw_entry.host, timeout=self.timeout)
            self.connections[key] = conn
        return conn

    def _drop_connection(self, raw_entry: _DownloadEntry) -> None:
        conn = self.connections.pop((raw_entry.https, raw_entry.host), None)
        if conn is not None:
            conn.close()

    def _request(self, conn: HTTPConnection, raw_entry: _DownloadEntry) -> HTTPResponse:
        """Send the request, the body of a non-200 response is consumed so that the
        connection can be reused.
        """
        conn.request("GET", raw_entry.target)
        res = conn.getresponse()
        if res.status != 200:
            while res.readinto(self.buffer):
                pass
        return res

    def _receive(self, res: HTTPResponse, entry: DownloadEntry,
        emit: Callable[[DownloadResult], None]
    ) -> Optional[str]:
        """Write the response body to the destination and check it. The final progress
        is emitted on success, otherwise the file is removed and the error code returned.
        """

        digest = None if entry.sha1 is None else hashlib.sha1()
        size = 0

        entry.dst.parent.mkdir(parents=True, exist_ok=True)
        with entry.dst.open("wb") as dst_fp:
            for chunk in self._read_chunks(res):
                size += len(chunk)
                if digest is not None:
                    digest.update(chunk)
                dst_fp.write(chunk)
                # A full buffer means more data is likely coming.
                if self.partial_progress and len(chunk) == self.buffer_cap:
                    emit(DownloadResultProgress(self.thread_id, entry, size, self.speed, False))

        if entry.size is not None and size != entry.size:
            error = DownloadResultError.INVALID_SIZE
        elif digest is not None and digest.hexdigest() != entry.sha1:
            error = DownloadResultError.INVALID_SHA1
        else:
            if entry.executable:
                # Executable by those who can read it.
                mode = entry.dst.stat().st_mode
                entry.dst.chmod(mode | ((mode & 0o444) >> 2))
            emit(DownloadResultProgress(self.thread_id, entry, size, self.speed, True))
            return None

        _unlink_partial(entry.dst)
        return error

    def _read_chunks(self, res: HTTPResponse) -> Iterator[memoryview]:
        while True:
            read_len = res.readinto(self.buffer)
            if not read_len:
                return
            self._update_speed(read_len)
            yield self.buffer[:read_len]

    def _update_speed(self, read_len: int) -> None:
        self._speed_total += read_len
        now = time.monotonic()
        elapsed = now - self._speed_time
        if elapsed > self.speed_interval:
            current = (self._speed_total - self._speed_last_total) / elapsed
            self.speed = self.speed_smoothing * current + (1 - self.speed_smoothing) * self.speed
            self._speed_time = now
            self._speed_last_total = self._speed_total


def _unlink_partial(file: Path) -> None:
    try:
        file.unlink()
    except FileNotFoundError:
        pass
