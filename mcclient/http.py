"""HTTP primitive functions and the retry policy shared by every network call site.
"""

from urllib.error import HTTPError, URLError
from http.client import HTTPResponse
import urllib.request
import logging
import socket
import json
import time
import ssl

import certifi

from . import LAUNCHER_NAME, LAUNCHER_VERSION

from typing import Optional, Any, Callable, Tuple, Type, TypeVar, cast


__all__ = ["HttpResponse", "HttpError", "TransientNetworkError", "RetryPolicy",
    "http_request", "ssl_context"]


logger = logging.getLogger(__name__)

# Timeout for API calls (JSON documents), file transfers use their own timeout.
DEFAULT_TIMEOUT = 15.0
# Timeout for a single file transfer.
FILE_TIMEOUT = 60.0

T = TypeVar("T")


class HttpResponse:
    """An HTTP response containing the status, data and received headers.
    """

    def __init__(self, res: Optional[HTTPResponse]) -> None:

        self.status = 0 if res is None else res.status
        self.data = b"null" if res is None else res.read()
        self.headers = {}

        if res is not None:
            for header_name, header_value in res.getheaders():
                self.headers[header_name] = header_value

    def json(self) -> Any:
        """Parse the data as JSON. This may raise a JSONDecodeError.
        """
        return json.loads(self.data)

    def text(self) -> str:
        """Parse the data as UTF-8 text.
        """
        return self.data.decode()

    def __repr__(self) -> str:
        return f"<HttpResponse {self.status}>"


class HttpError(Exception):
    """An HTTP error, raised when the status code of the response is not 2xx.

    If any network error happens and it's impossible to receive a response from the
    server, an instance of `HttpResponse` with status equal to 0 is used (also has no
    headers and `null` data). The original reason for this error is given in the
    `reason` attribute in any case.
    """

    def __init__(self, res: HttpResponse, method: str, url: str, reason: Optional[Exception]) -> None:
        super().__init__(res, method, url, reason)
        self.res = res
        self.method = method
        self.url = url
        self.reason = reason

    def is_transient(self) -> bool:
        """Return true if retrying the same request may succeed: no response at all,
        a request timeout, rate limiting or a server error.
        """
        status = self.res.status
        return status == 0 or status in (408, 429) or status >= 500

    def __str__(self) -> str:
        return f"{self.method} {self.url} failed with status {self.res.status}: {self.reason}"

    def __repr__(self) -> str:
        return f"<HttpError {self.res}, origin: {self.method} {self.url}, reason: {self.reason}>"


class TransientNetworkError(HttpError):
    """Subclass of `HttpError` raised for errors that are worth retrying, see
    `HttpError.is_transient`. Only surfaces to the caller once the retry policy is
    exhausted.
    """


class RetryPolicy:
    """The single retry policy used by all network call sites. A call is attempted at
    most `max_attempts` times, waiting `attempt * delay` seconds after the failed
    attempt number `attempt` (linear backoff).
    """

    __slots__ = "max_attempts", "delay", "sleep"

    def __init__(self, max_attempts: int = 3, delay: float = 1.0, *,
        sleep: Callable[[float], None] = time.sleep
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.delay = delay
        self.sleep = sleep

    def backoff(self, attempt: int) -> float:
        """Return the delay to wait after the given failed attempt (starting at 1).
        """
        return attempt * self.delay

    def wait(self, attempt: int) -> None:
        delay = self.backoff(attempt)
        if delay > 0:
            self.sleep(delay)

    def call(self, func: Callable[[], T], *,
        retry_on: Tuple[Type[BaseException], ...] = (TransientNetworkError,),
        what: str = "request"
    ) -> T:
        """Call the given function, retrying it while it raises one of the `retry_on`
        exceptions. The last exception is raised when all attempts are exhausted.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return func()
            except retry_on as error:
                if attempt >= self.max_attempts:
                    logger.warning("%s failed after %d attempts: %s", what, attempt, error)
                    raise
                logger.debug("%s failed (attempt %d/%d), retrying: %s", what, attempt, self.max_attempts, error)
                self.wait(attempt)

    def __repr__(self) -> str:
        return f"<RetryPolicy max_attempts: {self.max_attempts}, delay: {self.delay}>"


# Default policy, also used when no policy is given to `http_request`.
DEFAULT_RETRY = RetryPolicy()
# Policy that never retry, useful for calls where the caller handles failures.
NO_RETRY = RetryPolicy(1)


def ssl_context() -> ssl.SSLContext:
    """Create the SSL context used for all HTTPS connections, using certifi's bundle.
    """
    return ssl.create_default_context(cafile=certifi.where())


def http_request(method: str, url: str, *,
    data: Optional[bytes] = None,
    headers: Optional[dict] = None,
    accept: Optional[str] = None,
    content_type: Optional[str] = None,
    timeout: Optional[float] = None,
    retry: Optional[RetryPolicy] = None
) -> HttpResponse:
    """Make a synchronous HTTP request, retried according to the given policy (defaults
    to `DEFAULT_RETRY`). Redirections are followed. The timeout
    defaults to the global socket timeout if set, or `DEFAULT_TIMEOUT`.

    :return: The response returned should've a status of 2xx.
    :raises TransientNetworkError: When the request failed in a way that could be
    retried, but all attempts were exhausted.
    :raises HttpError: An error wrapping a response that is not of status 2xx.
    """

    if headers is None:
        headers = {}
    if accept is not None:
        headers["Accept"] = accept
    if content_type is not None:
        headers["Content-Type"] = content_type
    if "User-Agent" not in headers:
        headers["User-Agent"] = f"{LAUNCHER_NAME}/{LAUNCHER_VERSION}"

    if timeout is None:
        timeout = socket.getdefaulttimeout() or DEFAULT_TIMEOUT

    ctx = ssl_context()

    def request() -> HttpResponse:
        try:
            req = urllib.request.Request(url, data, headers, method=method)
            res: HTTPResponse = urllib.request.urlopen(req, context=ctx, timeout=timeout)
            return HttpResponse(res)
        except HTTPError as error:
            raise _wrap_error(HttpResponse(cast(HTTPResponse, error)), method, url, error)
        except URLError as error:
            raise _wrap_error(HttpResponse(None), method, url, error)
        except (socket.timeout, ConnectionError) as error:
            raise _wrap_error(HttpResponse(None), method, url, error)

    return (retry or DEFAULT_RETRY).call(request, what=f"{method} {url}")


def _wrap_error(res: HttpResponse, method: str, url: str, reason: Exception) -> HttpError:
    error = HttpError(res, method, url, reason)
    if error.is_transient():
        return TransientNetworkError(res, method, url, reason)
    return error
