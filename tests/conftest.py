import httpx
import pytest

from fakes import FakeAudioBackend
from lazi.permissions import GrantedProvider, MicrophonePermission


@pytest.fixture(autouse=True)
def reset_permission():
    MicrophonePermission.reset()
    yield
    MicrophonePermission.reset()


@pytest.fixture
def permission():
    return MicrophonePermission(GrantedProvider())


@pytest.fixture
def audio_backend():
    return FakeAudioBackend()


@pytest.fixture
def mock_client():
    def build(handler):
        return httpx.Client(transport=httpx.MockTransport(handler))

    return build
