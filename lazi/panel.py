"""The panel state machine tying recorder, transcription, storage and context checks together."""

from __future__ import annotations

import logging
import queue
import sqlite3
import time
from concurrent.futures import Future
from pathlib import Path
from typing import Callable, List, Optional

from .clipboard import copy_to_pasteboard
from .errors import LaziError
from .models import (
    Checking,
    ContextError,
    ContextResult,
    ContextState,
    Failure,
    Idle,
    NoContext,
    PanelState,
    Recording,
    Success,
    Transcribing,
    TranscriptionFailure,
    TranscriptionResult,
)
from .storage import StorageError

logger = logging.getLogger(__name__)

Dispatch = Callable[[Callable[[], None]], None]
Listener = Callable[[PanelState, ContextState], None]


def call_immediately(fn: Callable[[], None]) -> None:
    fn()


class CallQueue:
    """Dispatcher that defers callbacks to whichever thread drains the queue.

    Background workers hand results to ``__call__``; the control thread runs
    them with :meth:`run_pending` or :meth:`run_until`.
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[Callable[[], None]]" = queue.Queue()

    def __call__(self, fn: Callable[[], None]) -> None:
        self._queue.put(fn)

    def run_pending(self, timeout: Optional[float] = None) -> int:
        try:
            fn = self._queue.get(timeout=timeout) if timeout else self._queue.get_nowait()
        except queue.Empty:
            return 0
        fn()
        count = 1
        while True:
            try:
                fn = self._queue.get_nowait()
            except queue.Empty:
                return count
            fn()
            count += 1

    def run_until(self, predicate: Callable[[], bool], timeout: Optional[float] = None, poll: float = 0.05) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not predicate():
            wait = poll
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                wait = min(poll, remaining)
            self.run_pending(timeout=wait)
        return True


class PanelController:
    """Owns the :class:`PanelState` and :class:`ContextState` of the panel.

    All public methods and every dispatched callback must run on the same
    control thread. Network work runs on the clients' executors and comes back
    through ``dispatch``.
    """

    def __init__(
        self,
        recorder,
        transcriber,
        store,
        classifier=None,
        dispatch: Dispatch = call_immediately,
        history_limit: int = 20,
        compressed: bool = False,
    ) -> None:
        self._recorder = recorder
        self._transcriber = transcriber
        self._store = store
        self._classifier = classifier
        self._dispatch = dispatch
        self._history_limit = history_limit
        self._compressed = compressed
        self._state: PanelState = Idle()
        self._context: ContextState = NoContext()
        self._context_generation = 0
        self._saved_id: Optional[int] = None
        self._listeners: List[Listener] = []
        recorder.add_completion_listener(self._recording_completed)

    @property
    def state(self) -> PanelState:
        return self._state

    @property
    def context_state(self) -> ContextState:
        return self._context

    @property
    def record_enabled(self) -> bool:
        return not isinstance(self._state, Transcribing)

    @property
    def button_label(self) -> str:
        return "Stop" if isinstance(self._state, Recording) else "Record"

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def toggle(self) -> bool:
        """Start or stop recording. Returns ``False`` when the control is disabled."""

        state = self._state
        if isinstance(state, Transcribing):
            logger.info("Record toggle ignored while transcribing")
            return False

        if isinstance(state, Recording):
            logger.info("Stop recording requested")
            # Idle until the recorder reports the finished file.
            self._set_state(Idle())
            try:
                self._recorder.stop()
            except LaziError as exc:
                logger.error("Failed to stop recording: %s", exc)
                self._set_state(Failure(str(exc)))
            return True

        logger.info("Start recording requested")
        self._reset_context()
        try:
            path = self._recorder.start(compressed=self._compressed)
        except LaziError as exc:
            logger.error("Failed to start recording: %s", exc)
            self._set_state(Failure(str(exc)))
            return True
        self._set_state(Recording(path))
        return True

    def copy_text(self, copier: Callable[[str], None] = copy_to_pasteboard) -> bool:
        """Copy the transcript shown in ``Success`` to the clipboard."""

        state = self._state
        if not isinstance(state, Success):
            return False
        copier(state.text)
        logger.info("Copied transcript to clipboard")
        return True

    def check_context(self) -> bool:
        """Ask whether the current transcript refers to earlier ones."""

        state = self._state
        if not isinstance(state, Success):
            logger.debug("Context check needs a successful transcription")
            return False
        if isinstance(self._context, Checking):
            return False
        if self._classifier is None:
            self._set_context(ContextError("Context checks are not configured"))
            return True

        self._context_generation += 1
        generation = self._context_generation
        self._set_context(Checking())
        try:
            history = self._store.fetch_latest(self._history_limit, exclude_id=self._saved_id)
        except (StorageError, sqlite3.Error) as exc:
            logger.error("Failed to load transcript history: %s", exc)
            self._set_context(ContextError(str(exc)))
            return True

        future = self._classifier.submit(state.text, history)
        future.add_done_callback(lambda f: self._dispatch(lambda: self._context_done(generation, f)))
        return True

    def _recording_completed(self, path: Path) -> None:
        # The recorder may stop on its own, so Recording accepts the file too.
        if not isinstance(self._state, (Idle, Recording)):
            logger.warning("Ignoring completed recording %s in state %s", path, self._state)
            return
        logger.info("Recording completed, transcribing %s", path)
        self._reset_context()
        self._set_state(Transcribing(0.0))

        def on_progress(value: float) -> None:
            self._dispatch(lambda: self._progress(value))

        future = self._transcriber.submit(path, on_progress)
        future.add_done_callback(lambda f: self._dispatch(lambda: self._transcription_done(f)))

    def _progress(self, value: float) -> None:
        state = self._state
        if isinstance(state, Transcribing) and value > state.progress:
            self._set_state(Transcribing(min(value, 1.0)))

    def _transcription_done(self, future: "Future[TranscriptionResult]") -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Transcription worker crashed: %s", exc)
            self._set_state(Failure(str(exc)))
            return

        result = future.result()
        if isinstance(result, TranscriptionFailure):
            self._set_state(Failure(result.message))
            return

        self._saved_id = None
        try:
            self._saved_id = self._store.save(result.text).id
        except (StorageError, sqlite3.Error) as exc:
            logger.error("Failed to save transcript: %s", exc)
        self._set_state(Success(result.text))

    def _context_done(self, generation: int, future: "Future[bool]") -> None:
        if generation != self._context_generation:
            logger.debug("Dropping stale context result")
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Context check failed: %s", exc)
            self._set_context(ContextError(str(exc)))
            return
        self._set_context(ContextResult(bool(future.result())))

    def _reset_context(self) -> None:
        self._context_generation += 1
        if not isinstance(self._context, NoContext):
            self._set_context(NoContext())

    def _set_state(self, state: PanelState) -> None:
        logger.debug("Panel state %s -> %s", type(self._state).__name__, type(state).__name__)
        self._state = state
        self._notify()

    def _set_context(self, context: ContextState) -> None:
        self._context = context
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._state, self._context)
