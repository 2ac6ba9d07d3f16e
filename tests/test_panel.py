import httpx
import pytest

from fakes import FakeClassifier, FakeRecorder, FakeTranscriber
from lazi import recorder as recorder_mod
from lazi.errors import NetworkError, PermissionDenied, RecordingIOError
from lazi.models import (
    Checking,
    ContextError,
    ContextResult,
    Failure,
    Idle,
    NoContext,
    Recording,
    Success,
    Transcribing,
    TranscriptionFailure,
    TranscriptionSuccess,
)
from lazi.panel import CallQueue, PanelController
from lazi.recorder import AudioRecorder
from lazi.storage import TranscriptStore
from lazi.transcriber import WhisperClient


class SpyStore(TranscriptStore):
    def __init__(self, db_path):
        super().__init__(db_path)
        self.saved = []

    def save(self, text):
        self.saved.append(text)
        return super().save(text)


@pytest.fixture
def store(tmp_path):
    return SpyStore(tmp_path / "store.db")


@pytest.fixture
def recorder(tmp_path):
    return FakeRecorder(tmp_path)


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def panel(recorder, transcriber, store, classifier):
    return PanelController(recorder, transcriber, store, classifier=classifier)


def finish_transcription(transcriber, result):
    _path, _progress, future = transcriber.calls[-1]
    future.set_result(result)


def record_and_transcribe(panel, transcriber, text="hello world"):
    panel.toggle()
    panel.toggle()
    finish_transcription(transcriber, TranscriptionSuccess(text))


def test_end_to_end_recording_to_success(tmp_path, permission, audio_backend, store, mock_client):
    def handler(request):
        request.read()
        return httpx.Response(200, json={"text": "hello world"})

    recorder = AudioRecorder(tmp_path / "recordings", permission=permission, audio_backend=audio_backend)
    client = WhisperClient("sk-test", client=mock_client(handler))
    calls = CallQueue()
    panel = PanelController(recorder, client, store, dispatch=calls)
    seen = []
    panel.subscribe(lambda state, _context: seen.append(state))

    try:
        panel.toggle()
        assert isinstance(panel.state, Recording)
        panel.toggle()
        assert isinstance(panel.state, Transcribing)
        assert calls.run_until(lambda: not isinstance(panel.state, Transcribing), timeout=5)
    finally:
        client.close()

    assert panel.state == Success("hello world")
    assert store.saved == ["hello world"]
    kinds = [type(state) for state in seen]
    assert kinds[:3] == [Recording, Idle, Transcribing]
    progress = [state.progress for state in seen if isinstance(state, Transcribing)]
    assert progress == sorted(progress)
    assert all(0.0 <= value <= 1.0 for value in progress)


def test_toggle_ignored_while_transcribing(panel, recorder, transcriber):
    panel.toggle()
    panel.toggle()

    assert isinstance(panel.state, Transcribing)
    assert panel.record_enabled is False
    assert panel.toggle() is False
    assert recorder.starts == 1
    assert isinstance(panel.state, Transcribing)


def test_record_enabled_outside_transcribing(panel, transcriber):
    assert panel.record_enabled
    assert panel.button_label == "Record"
    panel.toggle()
    assert panel.record_enabled
    assert panel.button_label == "Stop"
    panel.toggle()
    finish_transcription(transcriber, TranscriptionSuccess("done"))
    assert panel.record_enabled


def test_start_failure_moves_to_failure(tmp_path, transcriber, store):
    recorder = FakeRecorder(tmp_path, start_error=PermissionDenied("Microphone access denied"))
    panel = PanelController(recorder, transcriber, store)

    assert panel.toggle() is True
    assert panel.state == Failure("Microphone access denied")
    assert transcriber.calls == []


def test_transcription_failure_is_reported_without_saving(panel, transcriber, store):
    panel.toggle()
    panel.toggle()
    finish_transcription(transcriber, TranscriptionFailure(NetworkError("Upload failed: offline")))

    assert panel.state == Failure("Upload failed: offline")
    assert store.saved == []


def test_progress_updates_transcribing_state(panel, transcriber):
    panel.toggle()
    panel.toggle()
    _path, on_progress, _future = transcriber.calls[-1]

    on_progress(0.25)
    assert panel.state == Transcribing(0.25)
    on_progress(0.1)
    assert panel.state == Transcribing(0.25)
    on_progress(1.0)
    assert panel.state == Transcribing(1.0)


def test_new_recording_after_success_resets_context(panel, transcriber, classifier):
    record_and_transcribe(panel, transcriber)
    panel.check_context()
    classifier.calls[-1][2].set_result(True)
    assert panel.context_state == ContextResult(True)

    panel.toggle()

    assert isinstance(panel.state, Recording)
    assert panel.context_state == NoContext()


def test_context_check_uses_history_without_current_record(panel, transcriber, classifier, store):
    store.save("meeting is at 3pm")
    store.save("buy milk")
    record_and_transcribe(panel, transcriber, text="remind me what I said about the meeting")

    assert panel.check_context() is True
    assert panel.context_state == Checking()

    new_text, history, future = classifier.calls[-1]
    assert new_text == "remind me what I said about the meeting"
    assert history == ["buy milk", "meeting is at 3pm"]

    future.set_result(True)
    assert panel.context_state == ContextResult(True)


def test_context_failure_leaves_success_untouched(panel, transcriber, classifier):
    record_and_transcribe(panel, transcriber)
    panel.check_context()
    classifier.calls[-1][2].set_exception(NetworkError("Chat request failed: offline"))

    assert panel.context_state == ContextError("Chat request failed: offline")
    assert panel.state == Success("hello world")


def test_context_check_requires_success(panel, classifier):
    assert panel.check_context() is False
    panel.toggle()
    assert panel.check_context() is False
    assert classifier.calls == []


def test_duplicate_context_check_is_ignored(panel, transcriber, classifier):
    record_and_transcribe(panel, transcriber)

    assert panel.check_context() is True
    assert panel.check_context() is False
    assert len(classifier.calls) == 1


def test_stale_context_result_is_dropped(panel, transcriber, classifier):
    record_and_transcribe(panel, transcriber)
    panel.check_context()
    stale = classifier.calls[-1][2]

    panel.toggle()
    stale.set_result(True)

    assert panel.context_state == NoContext()


def test_stop_without_completed_file_stays_idle(tmp_path, transcriber, store):
    class SilentRecorder(FakeRecorder):
        def stop(self):
            self.recording = False
            return None

    panel = PanelController(SilentRecorder(tmp_path), transcriber, store)
    panel.toggle()
    panel.toggle()

    assert panel.state == Idle()
    assert transcriber.calls == []


def test_call_queue_defers_until_drained():
    calls = CallQueue()
    ran = []
    calls(lambda: ran.append(1))
    calls(lambda: ran.append(2))

    assert ran == []
    assert calls.run_pending() == 2
    assert ran == [1, 2]
    assert calls.run_pending() == 0


def test_recorder_stopping_on_its_own_starts_transcription(panel, recorder, transcriber):
    panel.toggle()
    assert isinstance(panel.state, Recording)

    path = recorder.stop()

    assert panel.state == Transcribing(0.0)
    assert transcriber.calls[-1][0] == path


def test_stop_failure_moves_to_failure(tmp_path, transcriber, store):
    class BrokenRecorder(FakeRecorder):
        def stop(self):
            self.recording = False
            raise RecordingIOError("Could not stop the microphone: PortAudio error")

    panel = PanelController(BrokenRecorder(tmp_path), transcriber, store)
    panel.toggle()
    panel.toggle()

    assert panel.state == Failure("Could not stop the microphone: PortAudio error")
    assert transcriber.calls == []
    assert panel.record_enabled


def test_write_failure_during_recording_moves_to_failure(tmp_path, permission, audio_backend, transcriber, store, monkeypatch):
    class BrokenSink:
        def write(self, block):
            raise OSError("disk full")

        def close(self):
            pass

    monkeypatch.setattr(recorder_mod, "open_sink", lambda session: BrokenSink())
    recorder = AudioRecorder(tmp_path / "recordings", permission=permission, audio_backend=audio_backend)
    panel = PanelController(recorder, transcriber, store)

    panel.toggle()
    panel.toggle()

    assert isinstance(panel.state, Failure)
    assert "disk full" in panel.state.message
    assert transcriber.calls == []


def test_copy_text_only_in_success(panel, transcriber):
    copied = []
    assert panel.copy_text(copied.append) is False

    record_and_transcribe(panel, transcriber, text="call the dentist")

    assert panel.copy_text(copied.append) is True
    assert copied == ["call the dentist"]
