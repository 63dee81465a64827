"""Token and download coordination.

Tracks, per layer, whether a token fetch or a download is in flight, decides
when to fetch a token and when to start a download, and reacts to the
document engine's asynchronous events. Also keeps the list projection in
step with the backend listing and with token changes.

Every public entry point may be called from any thread: it posts to the
dispatcher, and all state is read and written there. select_row() is the one
exception: it reads the projection on the caller's thread to turn a position
into a row, so call it from the context that renders the projection.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from instant_docs.api_client import Layer, Result
from instant_docs.dispatch import SerialDispatcher
from instant_docs.engine import (
    AccessDeniedError,
    AuthenticationNeeded,
    DownloadFailed,
    DownloadFinished,
    EngineError,
    EngineEvent,
    ReauthenticationFailed,
    ReauthenticationSucceeded,
    SyncFailed,
    UserCancelledError,
)
from instant_docs.projection import (
    ListProjection,
    Position,
    Row,
    build_sections,
    by_descriptor,
    by_document_id,
)

if TYPE_CHECKING:
    from instant_docs.api_client import APIClient, FetchTask
    from instant_docs.engine import DocumentDescriptor, DocumentEngine

logger = logging.getLogger(__name__)

CompletionHandler = Callable[[Result], None]


class LayerState(str, Enum):
    """In-flight state of a layer. A busy layer is in exactly one non-idle state."""

    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    DOWNLOADING = "downloading"


class DocumentsCoordinator:
    """
    Coordinates backend tokens, engine downloads and the document list.

    Registers itself as the engine's only event listener.
    """

    def __init__(
        self,
        api_client: APIClient,
        engine: DocumentEngine,
        projection: Optional[ListProjection] = None,
        dispatcher: Optional[SerialDispatcher] = None,
    ):
        """
        Initialize the coordinator.

        Args:
            api_client: Client for the example backend
            engine: Document engine client
            projection: List view model (a new one if not given)
            dispatcher: Coordinating context (a new one if not given)
        """
        self.api_client = api_client
        self.engine = engine
        self.projection = projection if projection is not None else ListProjection()
        self.dispatcher = dispatcher if dispatcher is not None else SerialDispatcher()

        self._states: dict[Layer, LayerState] = {}
        # Layers whose running download was interrupted by a reauthentication
        self._interrupted_downloads: set[Layer] = set()

        self._list_task: Optional[FetchTask] = None
        self._list_generation = 0

        engine.set_listener(self.handle_event)

    # -- In-flight tracking

    @property
    def downloading(self) -> frozenset[Layer]:
        return frozenset(layer for layer, s in self._states.items() if s is LayerState.DOWNLOADING)

    @property
    def authenticating(self) -> frozenset[Layer]:
        return frozenset(layer for layer, s in self._states.items() if s is LayerState.AUTHENTICATING)

    def state_of(self, layer: Layer) -> LayerState:
        return self._states.get(layer, LayerState.IDLE)

    def is_busy(self, layer: Layer) -> bool:
        return self.state_of(layer) is not LayerState.IDLE

    def _set_state(self, layer: Layer, state: LayerState) -> None:
        if state is LayerState.IDLE:
            self._states.pop(layer, None)
            self._interrupted_downloads.discard(layer)
        else:
            self._states[layer] = state

    def _end_download(self, layer: Layer) -> None:
        state = self.state_of(layer)
        if state is LayerState.DOWNLOADING:
            self._set_state(layer, LayerState.IDLE)
        elif state is LayerState.AUTHENTICATING:
            self._interrupted_downloads.discard(layer)

    def _clear_all_states(self) -> None:
        self._states.clear()
        self._interrupted_downloads.clear()

    # -- Document list

    def reload_list(self, on_complete: Optional[CompletionHandler] = None) -> None:
        """
        Refresh the document list from the backend.

        Cancels any list fetch still running; only the latest one is applied.
        On failure the current list is left untouched. on_complete receives
        the Result on the coordinating context either way.
        """
        self.dispatcher.post(self._reload_list, on_complete)

    def _reload_list(self, on_complete: Optional[CompletionHandler]) -> None:
        if self._list_task is not None:
            self._list_task.cancel()

        self._list_generation += 1
        generation = self._list_generation
        self._list_task = self.api_client.fetch_document_list_task(
            lambda result: self.dispatcher.post(
                self._document_list_fetched, generation, result, on_complete
            )
        )

    def _document_list_fetched(
        self, generation: int, result: Result, on_complete: Optional[CompletionHandler]
    ) -> None:
        if generation != self._list_generation:
            logger.debug("Ignoring superseded document list response")
            return
        self._list_task = None

        if not result.ok:
            logger.error(f"Could not fetch document list: {result.reason}")
        else:
            documents = result.value
            if not documents:
                logger.info(f"No documents found. Upload one at {self.api_client.base_url}")
            self.projection.replace_all(build_sections(documents, self.engine))
            self._prune_unlisted_layers()

        if on_complete is not None:
            on_complete(result)

    def _prune_unlisted_layers(self) -> None:
        listed = {row.layer for row in self.projection.rows()}
        for layer in list(self._states):
            if layer not in listed:
                logger.debug(f"Layer '{layer}' is no longer listed, forgetting its in-flight state")
                self._set_state(layer, LayerState.IDLE)

    def close(self) -> None:
        """Cancel the outstanding list fetch, if any. Late responses are ignored."""
        self.dispatcher.post(self._close)

    def _close(self) -> None:
        if self._list_task is not None:
            self._list_task.cancel()
            self._list_task = None
        self._list_generation += 1

    # -- Downloads

    def select_row(self, position: Position) -> None:
        """
        User picked a row: make sure its layer gets downloaded.

        The position is resolved right away, against the projection the
        caller is showing. A position that no longer exists is ignored.
        """
        try:
            row = self.projection.row_at(position)
        except IndexError:
            logger.debug(f"No row at {position}, ignoring selection")
            return
        self.dispatcher.post(self._ensure_download_started, row)

    def ensure_download_started(self, row: Row) -> None:
        """
        Start downloading the row's layer unless it is downloaded or busy.

        Uses the row's token when it has one, otherwise fetches a token first.
        """
        self.dispatcher.post(self._ensure_download_started, row)

    def _ensure_download_started(self, row: Row) -> None:
        layer = row.layer
        if row.descriptor.is_downloaded or self.is_busy(layer):
            return

        if row.token is not None:
            self._start_download(row, row.token)
            return

        self._set_state(layer, LayerState.AUTHENTICATING)
        self.api_client.fetch_authentication_token_task(
            layer,
            lambda result: self.dispatcher.post(self._download_token_fetched, row, layer, result),
        )

    def _start_download(self, row: Row, token: str) -> None:
        layer = row.layer
        try:
            row.descriptor.download(token)
        except EngineError as e:
            logger.error(f"Could not start downloading layer '{layer}': {e}")
            return
        self._set_state(layer, LayerState.DOWNLOADING)

    def _download_token_fetched(self, row: Row, layer: Layer, result: Result) -> None:
        if self.state_of(layer) is LayerState.AUTHENTICATING:
            self._set_state(layer, LayerState.IDLE)

        if not result.ok:
            logger.error(f"Could not fetch authentication token for layer '{layer}': {result.reason}")
            return

        if self.projection.find_row(lambda r: r is row) is None:
            logger.info(f"Layer '{layer}' is no longer listed, dropping its new token")
            return

        self.projection.update_token(lambda r: r is row, result.value)
        self._ensure_download_started(row)

    def remove_document_storage(self, descriptor: DocumentDescriptor) -> None:
        """Purge one layer's local data and forget its in-flight state."""
        self.dispatcher.post(self._remove_document_storage, descriptor)

    def _remove_document_storage(self, descriptor: DocumentDescriptor) -> None:
        layer = Layer.from_descriptor(descriptor)
        try:
            descriptor.remove_local_storage()
        except EngineError as e:
            logger.error(f"Could not remove local storage of layer '{layer}': {e}")
            return
        self._set_state(layer, LayerState.IDLE)
        self.projection.reload_row(by_descriptor(descriptor))

    def clear_local_storage(self, on_complete: Optional[CompletionHandler] = None) -> None:
        """Purge all local data, then reload the list since every descriptor is invalid."""
        self.dispatcher.post(self._clear_local_storage, on_complete)

    def _clear_local_storage(self, on_complete: Optional[CompletionHandler]) -> None:
        try:
            self.engine.remove_local_storage()
        except EngineError as e:
            logger.error(f"Could not clear local storage: {e}")
            return
        self._clear_all_states()
        self._reload_list(on_complete)

    # -- Engine events

    def handle_event(self, event: EngineEvent) -> None:
        """Engine listener. Safe to call from any thread."""
        self.dispatcher.post(self._dispatch_event, event)

    def _dispatch_event(self, event: EngineEvent) -> None:
        if isinstance(event, DownloadFinished):
            self.on_download_finished(event.descriptor)
        elif isinstance(event, DownloadFailed):
            self.on_download_failed(event.descriptor, event.error)
        elif isinstance(event, SyncFailed):
            self.on_sync_failed(event.descriptor, event.error)
        elif isinstance(event, AuthenticationNeeded):
            self.on_authentication_needed(event.descriptor)
        elif isinstance(event, ReauthenticationSucceeded):
            self.on_reauthentication_succeeded(event.descriptor, event.token)
        elif isinstance(event, ReauthenticationFailed):
            self.on_reauthentication_failed(event.descriptor, event.error)
        else:
            logger.warning(f"Ignoring unknown engine event {type(event).__name__}")

    # The on_* handlers below run on the coordinating context.

    def on_download_finished(self, descriptor: DocumentDescriptor) -> None:
        self._end_download(Layer.from_descriptor(descriptor))
        self.projection.reload_row(by_descriptor(descriptor))

    def on_download_failed(self, descriptor: DocumentDescriptor, error: Exception) -> None:
        layer = Layer.from_descriptor(descriptor)
        logger.error(f"Failed to download layer '{layer}': {error}")
        self._end_download(layer)

    def on_sync_failed(self, descriptor: DocumentDescriptor, error: Exception) -> None:
        # Cancellation only tells us that a sync ended
        if isinstance(error, UserCancelledError):
            return
        logger.warning(f"Failed sync of layer '{Layer.from_descriptor(descriptor)}': {error}")

    def on_authentication_needed(self, descriptor: DocumentDescriptor) -> None:
        layer = Layer.from_descriptor(descriptor)
        state = self.state_of(layer)
        if state is LayerState.AUTHENTICATING:
            return
        if state is LayerState.DOWNLOADING:
            self._interrupted_downloads.add(layer)
        self._set_state(layer, LayerState.AUTHENTICATING)

        # The old token was rejected, never use it again
        self.projection.update_token(by_descriptor(descriptor), None)
        self.api_client.fetch_authentication_token_task(
            layer,
            lambda result: self.dispatcher.post(
                self._reauthentication_token_fetched, descriptor, layer, result
            ),
        )

    def _reauthentication_token_fetched(
        self, descriptor: DocumentDescriptor, layer: Layer, result: Result
    ) -> None:
        if not result.ok:
            logger.error(f"Could not fetch authentication token for layer '{layer}': {result.reason}")
            self._set_state(layer, LayerState.IDLE)
            return

        if self.state_of(layer) is not LayerState.AUTHENTICATING:
            logger.info(f"Layer '{layer}' is no longer authenticating, dropping its new token")
            return

        descriptor.reauthenticate(result.value)

    def on_reauthentication_succeeded(self, descriptor: DocumentDescriptor, token: str) -> None:
        layer = Layer.from_descriptor(descriptor)
        if self.state_of(layer) is LayerState.AUTHENTICATING:
            resume_download = layer in self._interrupted_downloads
            self._set_state(layer, LayerState.IDLE)
            if resume_download:
                self._set_state(layer, LayerState.DOWNLOADING)
        self.projection.update_token(by_descriptor(descriptor), token)

    def on_reauthentication_failed(self, descriptor: DocumentDescriptor, error: Exception) -> None:
        layer = Layer.from_descriptor(descriptor)
        logger.error(f"Could not update authentication token for layer '{layer}': {error}")
        self._set_state(layer, LayerState.IDLE)

        if not isinstance(error, AccessDeniedError):
            return

        # Access is gone for good: purge the data and stop listing the document
        try:
            descriptor.remove_local_storage()
        except EngineError as e:
            logger.warning(f"Could not purge local storage of layer '{layer}': {e}")

        removed = 0
        while self.projection.remove_row(by_document_id(layer.document_id)) is not None:
            removed += 1
        for other in list(self._states):
            if other.document_id == layer.document_id:
                self._set_state(other, LayerState.IDLE)
        if removed:
            logger.info(
                f"Removed document '{layer.document_id}' from the list. "
                "If you should still have access to it, refresh the list."
            )
