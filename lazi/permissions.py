"""Microphone authorization shared by every recorder in the process."""

from __future__ import annotations

import logging
import platform
import threading
from enum import Enum
from typing import Callable, Optional, Protocol

from .errors import PermissionDenied, PermissionTimeout

logger = logging.getLogger(__name__)

PERMISSION_TIMEOUT = 5.0


class AuthorizationStatus(Enum):
    NOT_DETERMINED = 0
    RESTRICTED = 1
    DENIED = 2
    AUTHORIZED = 3


class AuthorizationProvider(Protocol):
    """Source of truth for the platform's microphone permission."""

    def status(self) -> AuthorizationStatus:
        """Return the current authorization status without prompting."""

    def request_access(self, callback: Callable[[bool], None]) -> None:
        """Prompt the user; ``callback`` receives the answer, possibly on another thread."""


class AVFoundationProvider:
    """macOS authorization through ``AVCaptureDevice``."""

    def __init__(self) -> None:
        try:
            from AVFoundation import AVCaptureDevice, AVMediaTypeAudio  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "The `pyobjc` packages are required for microphone permission checks. Install lazi[mac]."
            ) from exc
        self._device = AVCaptureDevice
        self._media_type = AVMediaTypeAudio

    def status(self) -> AuthorizationStatus:  # pragma: no cover - platform call
        raw = int(self._device.authorizationStatusForMediaType_(self._media_type))
        return AuthorizationStatus(raw)

    def request_access(self, callback: Callable[[bool], None]) -> None:  # pragma: no cover - platform call
        self._device.requestAccessForMediaType_completionHandler_(
            self._media_type, lambda granted: callback(bool(granted))
        )


class GrantedProvider:
    """Platforms where PortAudio needs no runtime permission."""

    def status(self) -> AuthorizationStatus:
        return AuthorizationStatus.AUTHORIZED

    def request_access(self, callback: Callable[[bool], None]) -> None:
        callback(True)


def default_provider() -> AuthorizationProvider:
    if platform.system() == "Darwin":
        try:
            return AVFoundationProvider()
        except RuntimeError as exc:
            logger.warning("Falling back to unchecked microphone access: %s", exc)
    return GrantedProvider()


class MicrophonePermission:
    """Caches whether the process may record so users are prompted at most once.

    Use :meth:`init` to install the shared instance (tests pass a fake provider)
    and :meth:`shared` to fetch it. Recorders receive the instance explicitly.
    """

    _shared: Optional["MicrophonePermission"] = None
    _shared_lock = threading.Lock()

    def __init__(self, provider: AuthorizationProvider) -> None:
        self._provider = provider
        self._authorized = False
        self._lock = threading.Lock()

    @classmethod
    def init(cls, provider: Optional[AuthorizationProvider] = None) -> "MicrophonePermission":
        with cls._shared_lock:
            cls._shared = cls(provider or default_provider())
            return cls._shared

    @classmethod
    def shared(cls) -> "MicrophonePermission":
        with cls._shared_lock:
            if cls._shared is None:
                cls._shared = cls(default_provider())
            return cls._shared

    @classmethod
    def reset(cls) -> None:
        with cls._shared_lock:
            cls._shared = None

    def query(self) -> bool:
        return self._authorized

    def ensure(self, timeout: float = PERMISSION_TIMEOUT) -> None:
        """Return once recording is authorized, otherwise raise."""

        with self._lock:
            if self._authorized:
                return

            status = self._provider.status()
            logger.debug("Microphone authorization status: %s", status.name)
            if status is AuthorizationStatus.AUTHORIZED:
                self._authorized = True
                return
            if status is not AuthorizationStatus.NOT_DETERMINED:
                raise PermissionDenied("Microphone access denied")

            answered = threading.Event()
            answer = {"granted": False}

            def on_answer(granted: bool) -> None:
                answer["granted"] = granted
                answered.set()

            self._provider.request_access(on_answer)
            if not answered.wait(timeout):
                logger.warning("Microphone permission request timed out after %.1fs", timeout)
                raise PermissionTimeout("Microphone permission request timed out")

            if not answer["granted"] or self._provider.status() is not AuthorizationStatus.AUTHORIZED:
                raise PermissionDenied("Microphone access denied")

            logger.info("Microphone permission granted")
            self._authorized = True
