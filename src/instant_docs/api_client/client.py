"""
Example backend API client implementation.
"""

import base64
import errno
import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

CONNECTIVITY_MESSAGE = (
    "The application failed to connect to the server. Please ensure that you are "
    "connected to the internet and that the server is reachable from this device."
)

NO_BODY = "<no body data>"
NOT_UTF8_BODY = "<body is not valid UTF-8>"

# OS errors that mean "no network", as opposed to a server that refused us
NETWORK_UNREACHABLE_ERRNOS = frozenset({errno.ENETUNREACH, errno.ENETDOWN, errno.EHOSTUNREACH})


class APIClientError(Exception):
    """Base exception for backend client errors."""

    pass


class APIConnectivityError(APIClientError):
    """No network or the request timed out."""

    def __init__(self, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(CONNECTIVITY_MESSAGE)


class APITransportError(APIClientError):
    """Any other transport failure; keeps the transport's own message."""

    pass


class APIStatusError(APIClientError):
    """Server answered with an unexpected status code."""

    def __init__(self, status_code: int, response_body: str):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(f"Status code is {status_code} (Response body: '{response_body}')")


class APIMalformedBodyError(APIClientError):
    """Response body is not a JSON object."""

    def __init__(self, detail: str, response_body: str):
        self.detail = detail
        self.response_body = response_body
        super().__init__(f"{detail}\nData: '{response_body}'")


class APIMissingFieldError(APIClientError):
    """JSON object lacks a required field."""

    def __init__(self, field_name: str, raw_object: Any):
        self.field_name = field_name
        self.raw_object = raw_object
        super().__init__(f"Response is missing {field_name}. {raw_object}")


def is_network_unreachable(error: BaseException) -> bool:
    """Whether an exception chain contains a network-down or unreachable OS error.

    requests wraps the socket error in urllib3 errors, reachable through
    args, the retry error's reason, and exception chaining.
    """
    seen: set[int] = set()
    pending: list = [error]
    while pending:
        exc = pending.pop()
        if not isinstance(exc, BaseException) or id(exc) in seen:
            continue
        seen.add(id(exc))
        if isinstance(exc, OSError) and exc.errno in NETWORK_UNREACHABLE_ERRNOS:
            return True
        pending.extend(exc.args)
        pending.append(getattr(exc, "reason", None))
        pending.append(exc.__cause__)
        pending.append(exc.__context__)
    return False


def describe_body(body: Optional[bytes]) -> str:
    """Render a response body for error messages."""
    if not body:
        return NO_BODY
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError:
        return NOT_UTF8_BODY


@dataclass(frozen=True)
class Result:
    """Outcome of an asynchronous fetch: either a value or an error."""

    value: Any = None
    error: Optional[APIClientError] = None

    @classmethod
    def success(cls, value: Any) -> "Result":
        return cls(value=value)

    @classmethod
    def failure(cls, error: APIClientError) -> "Result":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def reason(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None


@dataclass
class Document:
    """Document as listed by the example backend, with one token per layer."""

    title: str
    identifier: str
    tokens: list[str] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, data: Any) -> Optional["Document"]:
        """Create from an API list entry, or None if the entry is malformed."""
        if not isinstance(data, dict):
            return None

        title = data.get("title")
        identifier = data.get("id")
        tokens = data.get("tokens")
        if not isinstance(title, str) or not isinstance(identifier, str):
            return None
        if not isinstance(tokens, list) or not all(isinstance(t, str) for t in tokens):
            return None

        return cls(title=title, identifier=identifier, tokens=list(tokens))


@dataclass(frozen=True)
class Layer:
    """A named layer of a document. The default layer has an empty name."""

    document_id: str
    name: str = ""

    @classmethod
    def from_descriptor(cls, descriptor: Any) -> "Layer":
        return cls(document_id=descriptor.identifier, name=descriptor.layer_name)

    @property
    def endpoint(self) -> str:
        endpoint = f"document/{quote(self.document_id, safe='')}"
        if self.name:
            endpoint += f"/{quote(self.name, safe='')}"
        return endpoint

    def __str__(self) -> str:
        return f"{self.document_id}/{self.name}" if self.name else self.document_id


class FetchTask:
    """
    Handle for a request running on the client's thread pool.

    Cancelling is best-effort for the request itself, but once cancel()
    returns the callback is guaranteed not to run.
    """

    def __init__(self, description: str):
        self.description = description
        self._lock = threading.Lock()
        self._cancelled = False
        self._future: Optional[Future] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def done(self) -> bool:
        return self._future is not None and self._future.done()

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
        if self._future is not None:
            self._future.cancel()

    def _attach(self, future: Future) -> None:
        self._future = future

    def _deliver(self, callback: Callable[[Result], None], result: Result) -> None:
        with self._lock:
            if self._cancelled:
                logger.debug(f"Dropping result of cancelled task: {self.description}")
                return
            callback(result)

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else ("done" if self.done() else "pending")
        return f"<FetchTask {self.description} {state}>"


class APIClient:
    """
    Client for the example backend API.

    Features:
    - List documents with their per-layer tokens
    - Fetch a fresh token for one layer
    - HTTP Basic authentication on every request
    - Cancellable background fetches delivering a Result
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        password: str = "",
        timeout: Optional[float] = None,
        max_retries: int = 0,
        executor: Optional[ThreadPoolExecutor] = None,
        max_workers: int = 4,
    ):
        """
        Initialize the backend client.

        Args:
            base_url: Backend URL (e.g., "http://localhost:3000")
            user_id: User for HTTP Basic authentication
            password: Password for HTTP Basic authentication
            timeout: Request timeout in seconds (None: transport default)
            max_retries: Retry attempts for connection failures
            executor: Thread pool for background fetches (owned if not given)
            max_workers: Pool size when the client creates its own pool
        """
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.timeout = timeout

        credentials = base64.b64encode(f"{user_id}:{password}".encode("utf-8")).decode("ascii")
        self.session = requests.Session()
        self.session.headers.update({
            "Authorization": f"Basic {credentials}",
            "Accept": "application/json",
        })

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=0.5,
            status_forcelist=[502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="instant-api"
        )

    def _get_json(self, endpoint: str) -> dict:
        """GET an endpoint and return its JSON object, raising APIClientError."""
        url = f"{self.base_url}/api/{endpoint}"

        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.SSLError as e:
            raise APITransportError(str(e))
        except requests.exceptions.Timeout as e:
            raise APIConnectivityError(e)
        except requests.exceptions.ConnectionError as e:
            if is_network_unreachable(e):
                raise APIConnectivityError(e)
            raise APITransportError(str(e))
        except requests.exceptions.RequestException as e:
            raise APITransportError(str(e))

        body = response.content
        if response.status_code != 200:
            raise APIStatusError(response.status_code, describe_body(body))

        try:
            obj = json.loads(body)
        except ValueError as e:
            raise APIMalformedBodyError(f"Could not parse JSON: {e}", describe_body(body))

        if not isinstance(obj, dict):
            raise APIMalformedBodyError(
                f"JSON object has type {type(obj).__name__} instead of dict",
                describe_body(body),
            )

        return obj

    def test_connection(self) -> bool:
        """Test connection to the backend."""
        try:
            self.list_documents()
            return True
        except APIClientError as e:
            logger.warning(f"Backend connection test failed: {e}")
            return False

    def list_documents(self) -> list[Document]:
        """
        List all documents.

        Entries missing title, id or tokens are skipped.

        Returns:
            Documents in the order the backend returned them
        """
        data = self._get_json("documents")

        entries = data.get("documents")
        if not isinstance(entries, list):
            raise APIMissingFieldError("documents array", data)

        documents = []
        for entry in entries:
            document = Document.from_api_response(entry)
            if document is None:
                logger.debug(f"Skipping malformed document entry: {entry}")
                continue
            documents.append(document)

        return documents

    def get_authentication_token(self, layer: Layer) -> str:
        """
        Fetch a fresh authentication token for a layer.

        Args:
            layer: Layer to authenticate

        Returns:
            The token (JWT)
        """
        data = self._get_json(layer.endpoint)

        token = data.get("token")
        if not isinstance(token, str):
            raise APIMissingFieldError("token", data)

        return token

    def fetch_document_list_task(self, callback: Callable[[Result], None]) -> FetchTask:
        """Fetch the document list in the background. Callback runs on a pool thread."""
        return self._submit("document list", self.list_documents, callback)

    def fetch_authentication_token_task(
        self, layer: Layer, callback: Callable[[Result], None]
    ) -> FetchTask:
        """Fetch a layer token in the background. Callback runs on a pool thread."""
        return self._submit(
            f"token for layer '{layer}'",
            lambda: self.get_authentication_token(layer),
            callback,
        )

    def _submit(
        self,
        description: str,
        operation: Callable[[], Any],
        callback: Callable[[Result], None],
    ) -> FetchTask:
        task = FetchTask(description)

        def run() -> None:
            if task.cancelled:
                return
            try:
                result = Result.success(operation())
            except APIClientError as e:
                result = Result.failure(e)
            try:
                task._deliver(callback, result)
            except Exception:
                logger.exception(f"Callback for {description} failed")

        task._attach(self._executor.submit(run))
        return task

    def close(self) -> None:
        """Release the HTTP session and the owned thread pool."""
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        self.session.close()
