import av
import pytest
import soundfile as sf

from fakes import FakeAudioBackend, FakeInputStream
from lazi.errors import PermissionDenied, RecordingIOError
from lazi.models import AudioFormat
from lazi.permissions import AuthorizationStatus, MicrophonePermission
from lazi import recorder as recorder_mod
from lazi.recorder import AudioRecorder


class DeniedProvider:
    def status(self):
        return AuthorizationStatus.DENIED

    def request_access(self, callback):
        raise AssertionError("should not prompt")


def make_recorder(tmp_path, permission, backend, timestamp=1_700_000_000):
    return AudioRecorder(
        tmp_path / "recordings",
        permission=permission,
        audio_backend=backend,
        clock=lambda: timestamp,
    )


def test_stop_after_start_produces_wav(tmp_path, permission, audio_backend):
    recorder = make_recorder(tmp_path, permission, audio_backend)

    path = recorder.start()
    assert recorder.is_recording
    assert recorder.session.format is AudioFormat.UNCOMPRESSED
    final = recorder.stop()

    assert final == path
    assert path.name == "rec_1700000000.wav"
    assert path.stat().st_size > 0
    info = sf.info(str(path))
    assert info.format == "WAV"
    assert info.samplerate == 16000
    assert info.frames == 32000
    assert not recorder.is_recording


def test_uses_native_device_format(tmp_path, permission):
    backend = FakeAudioBackend(samplerate=48000, channels=2, seconds=0.5)
    recorder = make_recorder(tmp_path, permission, backend)

    path = recorder.start()
    recorder.stop()

    stream = backend.streams[0]
    assert stream.samplerate == 48000
    assert stream.channels == 2
    assert stream.closed
    info = sf.info(str(path))
    assert info.channels == 2
    assert info.samplerate == 48000


def test_compressed_recording_is_m4a(tmp_path, permission, audio_backend):
    recorder = make_recorder(tmp_path, permission, audio_backend)

    path = recorder.start(compressed=True)
    assert recorder.session.format is AudioFormat.COMPRESSED
    recorder.stop()

    assert path.suffix == ".m4a"
    assert path.stat().st_size > 0
    with av.open(str(path)) as container:
        assert container.streams.audio[0].codec_context.name == "aac"


def test_start_twice_returns_same_path(tmp_path, permission, audio_backend):
    recorder = make_recorder(tmp_path, permission, audio_backend)

    first = recorder.start()
    second = recorder.start()
    recorder.stop()

    assert first == second
    assert len(audio_backend.streams) == 1
    assert list((tmp_path / "recordings").iterdir()) == [first]


def test_stop_when_idle_is_noop(tmp_path, permission, audio_backend):
    recorder = make_recorder(tmp_path, permission, audio_backend)
    completed = []
    recorder.add_completion_listener(completed.append)

    assert recorder.stop() is None
    assert completed == []


def test_completion_listener_receives_path(tmp_path, permission, audio_backend):
    recorder = make_recorder(tmp_path, permission, audio_backend)
    completed = []
    recorder.add_completion_listener(completed.append)

    path = recorder.start()
    recorder.stop()

    assert completed == [path]


def test_name_collision_gets_suffix(tmp_path, permission, audio_backend):
    recorder = make_recorder(tmp_path, permission, audio_backend)

    first = recorder.start()
    recorder.stop()
    second = recorder.start()
    recorder.stop()

    assert first.name == "rec_1700000000.wav"
    assert second.name == "rec_1700000000-1.wav"


def test_permission_denied_creates_no_file(tmp_path, audio_backend):
    recorder = make_recorder(tmp_path, MicrophonePermission(DeniedProvider()), audio_backend)

    with pytest.raises(PermissionDenied):
        recorder.start()

    assert not recorder.is_recording
    assert audio_backend.streams == []
    assert not (tmp_path / "recordings").exists()


def test_unwritable_directory_raises_io_error(tmp_path, permission, audio_backend):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file in the way")
    recorder = AudioRecorder(blocker / "recordings", permission=permission, audio_backend=audio_backend)

    with pytest.raises(RecordingIOError):
        recorder.start()
    assert not recorder.is_recording


def test_empty_recording_is_not_announced(tmp_path, permission, audio_backend, monkeypatch):
    recorder = make_recorder(tmp_path, permission, audio_backend)
    completed = []
    recorder.add_completion_listener(completed.append)

    path = recorder.start()
    original_close = recorder._writer.close

    def close_and_truncate():
        original_close()
        path.write_bytes(b"")

    monkeypatch.setattr(recorder._writer, "close", close_and_truncate)

    assert recorder.stop() is None
    assert completed == []


class FailingSink:
    def __init__(self):
        self.closed = False

    def write(self, block):
        raise OSError("disk full")

    def close(self):
        self.closed = True


def test_write_failure_raises_io_error_on_stop(tmp_path, permission, audio_backend, monkeypatch):
    sink = FailingSink()
    monkeypatch.setattr(recorder_mod, "open_sink", lambda session: sink)
    recorder = make_recorder(tmp_path, permission, audio_backend)
    completed = []
    recorder.add_completion_listener(completed.append)

    recorder.start()
    with pytest.raises(RecordingIOError, match="disk full"):
        recorder.stop()

    assert sink.closed
    assert completed == []
    assert not recorder.is_recording


def test_stream_stop_failure_raises_io_error(tmp_path, permission, audio_backend, monkeypatch):
    recorder = make_recorder(tmp_path, permission, audio_backend)
    completed = []
    recorder.add_completion_listener(completed.append)

    path = recorder.start()

    def broken_stop():
        raise OSError("PortAudio error")

    monkeypatch.setattr(audio_backend.streams[0], "stop", broken_stop)

    with pytest.raises(RecordingIOError, match="PortAudio error"):
        recorder.stop()

    assert completed == []
    assert not recorder.is_recording
    assert sf.info(str(path)).frames == 32000


class UnstartableStream(FakeInputStream):
    def start(self):
        raise OSError("device busy")


class UnstartableBackend(FakeAudioBackend):
    def InputStream(self, **kwargs):
        stream = UnstartableStream(self, **kwargs)
        self.streams.append(stream)
        return stream


def test_stream_start_failure_closes_stream_and_file(tmp_path, permission):
    backend = UnstartableBackend()
    recorder = make_recorder(tmp_path, permission, backend)

    with pytest.raises(RecordingIOError, match="device busy"):
        recorder.start()

    assert backend.streams[0].closed
    assert not recorder.is_recording
    assert list((tmp_path / "recordings").iterdir()) == []
