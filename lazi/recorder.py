"""Microphone capture into WAV or M4A files."""

from __future__ import annotations

import logging
import queue
import threading
import time
from datetime import datetime
from fractions import Fraction
from pathlib import Path
from typing import Any, Callable, List, Optional

import numpy as np

from .errors import RecordingIOError
from .models import AudioFormat, RecordingSession
from .permissions import MicrophonePermission

logger = logging.getLogger(__name__)

AAC_BIT_RATE = 64000
_STOP = object()


class WavSink:
    """Uncompressed 32-bit float WAV at the device's native format."""

    def __init__(self, path: Path, sample_rate: int, channels: int) -> None:
        try:
            import soundfile as sf  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("The `soundfile` package is required to write audio files.") from exc
        self._file = sf.SoundFile(
            str(path),
            mode="w",
            samplerate=sample_rate,
            channels=channels,
            format="WAV",
            subtype="FLOAT",
        )

    def write(self, block: np.ndarray) -> None:
        self._file.write(block)

    def close(self) -> None:
        self._file.close()


class M4aSink:
    """AAC encoded audio in an MP4 container."""

    def __init__(self, path: Path, sample_rate: int, channels: int) -> None:
        try:
            import av  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("The `av` package is required for compressed recordings.") from exc
        self._av = av
        self._sample_rate = sample_rate
        self._layout = "mono" if channels == 1 else "stereo"
        self._container = av.open(str(path), mode="w", format="mp4")
        self._stream = self._container.add_stream("aac", rate=sample_rate)
        self._stream.codec_context.layout = self._layout
        self._stream.codec_context.bit_rate = AAC_BIT_RATE
        self._samples = 0

    def write(self, block: np.ndarray) -> None:
        interleaved = np.ascontiguousarray(block, dtype=np.float32).reshape(1, -1)
        frame = self._av.AudioFrame.from_ndarray(interleaved, format="flt", layout=self._layout)
        frame.sample_rate = self._sample_rate
        frame.time_base = Fraction(1, self._sample_rate)
        frame.pts = self._samples
        self._samples += block.shape[0]
        for packet in self._stream.encode(frame):
            self._container.mux(packet)

    def close(self) -> None:
        try:
            for packet in self._stream.encode(None):
                self._container.mux(packet)
        finally:
            self._container.close()


def open_sink(session: RecordingSession):
    if session.format is AudioFormat.COMPRESSED:
        return M4aSink(session.file_path, session.sample_rate, session.channels)
    return WavSink(session.file_path, session.sample_rate, session.channels)


class SerialWriter:
    """Drains captured blocks into a sink on one background thread, in order."""

    def __init__(self, sink) -> None:
        self._sink = sink
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self.error: Optional[BaseException] = None
        self._thread = threading.Thread(target=self._run, name="lazi-audio-writer", daemon=True)
        self._thread.start()

    def submit(self, block: np.ndarray) -> None:
        self._queue.put(block)

    def close(self) -> None:
        self._queue.put(_STOP)
        self._thread.join()
        try:
            self._sink.close()
        except Exception as exc:
            logger.error("Failed to close audio file: %s", exc)
            self.error = self.error or exc

    def _run(self) -> None:
        while True:
            block = self._queue.get()
            if block is _STOP:
                return
            if self.error is not None:
                continue
            try:
                self._sink.write(block)
            except Exception as exc:
                logger.error("Write error: %s", exc)
                self.error = exc


class AudioRecorder:
    """Record the default microphone into files under ``directory``.

    ``start`` returns the output path immediately and capture continues until
    ``stop``. Completion listeners receive the final path once the file has
    been closed and verified on disk.
    """

    def __init__(
        self,
        directory: Path,
        permission: Optional[MicrophonePermission] = None,
        audio_backend: Any = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if audio_backend is None:
            try:
                import sounddevice as audio_backend  # type: ignore
            except Exception as exc:  # pragma: no cover - optional dependency
                raise RuntimeError("The `sounddevice` package is required for recording.") from exc

        self._sd = audio_backend
        self._directory = Path(directory)
        self._permission = permission or MicrophonePermission.shared()
        self._clock = clock
        self._stream = None
        self._writer: Optional[SerialWriter] = None
        self._session: Optional[RecordingSession] = None
        self._listeners: List[Callable[[Path], None]] = []

    @property
    def is_recording(self) -> bool:
        return self._session is not None

    @property
    def session(self) -> Optional[RecordingSession]:
        return self._session

    def add_completion_listener(self, callback: Callable[[Path], None]) -> None:
        self._listeners.append(callback)

    def start(self, compressed: bool = False) -> Path:
        if self._session is not None:
            logger.debug("Already recording, returning %s", self._session.file_path)
            return self._session.file_path

        self._permission.ensure()

        audio_format = AudioFormat.for_flag(compressed)
        path = self._next_path(audio_format)
        sample_rate, channels = self._native_format(audio_format)
        session = RecordingSession(
            file_path=path,
            format=audio_format,
            started_at=datetime.now(),
            sample_rate=sample_rate,
            channels=channels,
        )

        try:
            writer = SerialWriter(open_sink(session))
        except Exception as exc:
            path.unlink(missing_ok=True)
            raise RecordingIOError(f"Could not create {path}: {exc}") from exc

        stream = None
        try:
            stream = self._sd.InputStream(
                samplerate=sample_rate,
                channels=channels,
                dtype="float32",
                callback=self._callback,
            )
            self._writer = writer
            stream.start()
        except Exception as exc:
            self._writer = None
            if stream is not None:
                try:
                    stream.close()
                except Exception as close_exc:
                    logger.warning("Failed to close input stream: %s", close_exc)
            writer.close()
            path.unlink(missing_ok=True)
            raise RecordingIOError(f"Could not open the microphone: {exc}") from exc

        self._stream = stream
        self._session = session
        logger.info("Recording to %s (%d Hz, %d ch, %s)", path, sample_rate, channels, audio_format.value)
        return path

    def stop(self) -> Optional[Path]:
        if self._session is None:
            logger.debug("Not currently recording")
            return None

        session = self._session
        stream, writer = self._stream, self._writer
        self._stream = None
        self._writer = None
        self._session = None

        try:
            stream.stop()
            stream.close()
        except Exception as exc:
            raise RecordingIOError(f"Could not stop the microphone: {exc}") from exc
        finally:
            writer.close()

        if writer.error is not None:
            raise RecordingIOError(f"Failed to write {session.file_path}: {writer.error}") from writer.error

        path = session.file_path
        try:
            size = path.stat().st_size
        except OSError:
            logger.warning("Recording missing at expected path %s", path)
            return None
        if size <= 0:
            logger.warning("Recording %s is empty, skipping transcription", path)
            return None

        logger.info("Recording saved: %s (%d bytes)", path, size)
        for listener in list(self._listeners):
            listener(path)
        return path

    def _callback(self, indata, frames, time_info, status) -> None:  # type: ignore[override]
        if status:
            logger.debug("Recorder status: %s", status)
        writer = self._writer
        if writer is not None:
            writer.submit(indata.copy())

    def _native_format(self, audio_format: AudioFormat) -> tuple[int, int]:
        try:
            info = self._sd.query_devices(kind="input")
        except Exception as exc:
            raise RecordingIOError(f"No input device available: {exc}") from exc
        sample_rate = int(info["default_samplerate"])
        channels = max(1, int(info["max_input_channels"]))
        if audio_format is AudioFormat.COMPRESSED:
            channels = min(channels, 2)
        return sample_rate, channels

    def _next_path(self, audio_format: AudioFormat) -> Path:
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RecordingIOError(f"Could not create recordings directory {self._directory}: {exc}") from exc

        stem = f"rec_{int(self._clock())}"
        path = self._directory / f"{stem}{audio_format.extension}"
        counter = 1
        while path.exists():
            path = self._directory / f"{stem}-{counter}{audio_format.extension}"
            counter += 1
        return path
