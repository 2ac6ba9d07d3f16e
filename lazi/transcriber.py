"""Upload recordings to the Whisper transcription endpoint."""

from __future__ import annotations

import logging
from concurrent.futures import Future
from pathlib import Path
from typing import Callable, Iterator, Optional

import httpx
from pydantic import BaseModel, StrictStr, ValidationError

from .errors import EmptyResponse, EncodingError, InvalidResponse, LaziError, NetworkError
from .models import Config, TranscriptionFailure, TranscriptionRequest, TranscriptionResult, TranscriptionSuccess
from .remote import DEFAULT_BASE_URL, RemoteClient, api_error_message, auth_headers

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
ProgressCallback = Callable[[float], None]


class TranscriptionPayload(BaseModel):
    text: StrictStr


class UploadProgress:
    """Turns byte counts into a clamped, non-decreasing fraction."""

    def __init__(self, total: int, callback: Optional[ProgressCallback]) -> None:
        self._total = total
        self._callback = callback
        self._sent = 0
        self._last = 0.0

    def advance(self, count: int) -> None:
        if self._callback is None or self._total <= 0:
            return
        self._sent += count
        value = min(max(self._sent / self._total, 0.0), 1.0)
        if value < self._last:
            return
        self._last = value
        self._callback(value)


class WhisperClient(RemoteClient):
    """Transcribe audio files through ``POST /audio/transcriptions``.

    ``transcribe`` reports failures as :class:`TranscriptionFailure` instead of
    raising. There are no retries: one failed attempt is the result.
    """

    thread_name = "lazi-transcribe"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        model: str = "whisper-1",
        language: str = "en",
        timeout: float = 60.0,
        client: Optional[httpx.Client] = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        super().__init__(api_key, base_url=base_url, timeout=timeout, client=client)
        self.model = model
        self.language = language
        self._chunk_size = chunk_size

    @classmethod
    def from_config(cls, config: Config, client: Optional[httpx.Client] = None) -> "WhisperClient":
        return cls(
            cls._key_from_config(config),
            base_url=config.api_base_url,
            model=config.transcription_model,
            language=config.language,
            timeout=config.upload_timeout,
            client=client,
        )

    def submit(self, audio_path: Path, on_progress: Optional[ProgressCallback] = None) -> "Future[TranscriptionResult]":
        return self._submit(self.transcribe, audio_path, on_progress)

    def transcribe(self, audio_path: Path, on_progress: Optional[ProgressCallback] = None) -> TranscriptionResult:
        try:
            text = self._transcribe(Path(audio_path), on_progress)
        except LaziError as exc:
            logger.error("Transcription of %s failed: %s", audio_path, exc)
            return TranscriptionFailure(exc)
        return TranscriptionSuccess(text)

    def _transcribe(self, audio_path: Path, on_progress: Optional[ProgressCallback]) -> str:
        headers = auth_headers(self._api_key)
        request = TranscriptionRequest(audio_path, model=self.model, language=self.language)
        content_type, body = self._encode(request)
        logger.info("Uploading %s (%d bytes multipart)", request.filename, len(body))

        headers.update({"Content-Type": content_type, "Content-Length": str(len(body))})
        progress = UploadProgress(len(body), on_progress)
        try:
            response = self._client.post(
                self._url("audio/transcriptions"),
                content=self._stream(body, progress),
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.RequestError as exc:
            raise NetworkError(f"Upload failed: {exc}") from exc

        return self._parse(response)

    def _encode(self, request: TranscriptionRequest) -> tuple[str, bytes]:
        try:
            audio = request.audio_path.read_bytes()
        except OSError as exc:
            raise EncodingError(f"Failed to read {request.audio_path}: {exc}") from exc
        encoded = httpx.Request(
            "POST",
            self._url("audio/transcriptions"),
            data=request.form_fields(),
            files={"file": (request.filename, audio, request.mime_type)},
        )
        return encoded.headers["Content-Type"], encoded.read()

    def _stream(self, body: bytes, progress: UploadProgress) -> Iterator[bytes]:
        for offset in range(0, len(body), self._chunk_size):
            chunk = body[offset : offset + self._chunk_size]
            yield chunk
            progress.advance(len(chunk))

    def _parse(self, response: httpx.Response) -> str:
        if not response.content:
            raise EmptyResponse(f"Empty response from transcription service (HTTP {response.status_code})")
        logger.debug("Raw response: %s", response.text)
        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidResponse(f"Transcription response is not JSON (HTTP {response.status_code})") from exc
        try:
            return TranscriptionPayload.model_validate(payload).text
        except ValidationError as exc:
            detail = api_error_message(payload) or "missing `text` field"
            raise InvalidResponse(f"Invalid transcription response (HTTP {response.status_code}): {detail}") from exc
