"""Test fixtures and utilities."""

from __future__ import annotations

import pytest

from instant_docs.api_client import FetchTask, Layer, Result
from instant_docs.dispatch import SerialDispatcher
from instant_docs.engine import EngineError
from instant_docs.projection import ListProjection


class FakeDescriptor:
    """Stand-in for an engine-owned document descriptor."""

    def __init__(self, identifier: str, layer_name: str = "", is_downloaded: bool = False):
        self.identifier = identifier
        self.layer_name = layer_name
        self.is_downloaded = is_downloaded
        self.download_tokens: list[str] = []
        self.reauthenticate_tokens: list[str] = []
        self.storage_removals = 0
        self.download_error: Exception | None = None
        self.remove_error: Exception | None = None

    def download(self, token: str) -> None:
        if self.download_error is not None:
            raise self.download_error
        self.download_tokens.append(token)

    def reauthenticate(self, token: str) -> None:
        self.reauthenticate_tokens.append(token)

    def remove_local_storage(self) -> None:
        if self.remove_error is not None:
            raise self.remove_error
        self.storage_removals += 1
        self.is_downloaded = False

    def __repr__(self) -> str:
        return f"<FakeDescriptor {self.identifier}/{self.layer_name}>"


class FakeEngine:
    """Stand-in for the document engine client."""

    def __init__(self):
        self.descriptors: dict[str, FakeDescriptor] = {}
        self.listener = None
        self.storage_removals = 0
        self.remove_error: Exception | None = None

    def add(self, token: str, identifier: str, layer_name: str = "", **kwargs) -> FakeDescriptor:
        descriptor = FakeDescriptor(identifier, layer_name, **kwargs)
        self.descriptors[token] = descriptor
        return descriptor

    def descriptor_for_token(self, token: str) -> FakeDescriptor:
        try:
            return self.descriptors[token]
        except KeyError:
            raise EngineError(f"Invalid token: {token}")

    def remove_local_storage(self) -> None:
        if self.remove_error is not None:
            raise self.remove_error
        self.storage_removals += 1

    def set_listener(self, handler) -> None:
        self.listener = handler


class FakeAPIClient:
    """Backend client whose fetches are completed by the test."""

    base_url = "http://backend.test"

    def __init__(self):
        self.token_requests: list[tuple[Layer, object, FetchTask]] = []
        self.list_requests: list[tuple[object, FetchTask]] = []

    def fetch_authentication_token_task(self, layer: Layer, callback) -> FetchTask:
        task = FetchTask(f"token for layer '{layer}'")
        self.token_requests.append((layer, callback, task))
        return task

    def fetch_document_list_task(self, callback) -> FetchTask:
        task = FetchTask("document list")
        self.list_requests.append((callback, task))
        return task

    def complete_token(self, index: int, result: Result) -> None:
        _, callback, task = self.token_requests[index]
        task._deliver(callback, result)

    def complete_list(self, index: int, result: Result) -> None:
        callback, task = self.list_requests[index]
        task._deliver(callback, result)


@pytest.fixture
def dispatcher() -> SerialDispatcher:
    return SerialDispatcher(name="test-coordinator")


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def api_client() -> FakeAPIClient:
    return FakeAPIClient()


@pytest.fixture
def projection() -> ListProjection:
    return ListProjection()


@pytest.fixture
def sample_documents_response() -> dict:
    """Sample /api/documents response."""
    return {
        "documents": [
            {"id": "d1", "title": "Doc", "tokens": ["abc"]},
            {"id": "d2", "title": "Board Minutes", "tokens": ["jwt-default", "jwt-review"]},
        ]
    }
