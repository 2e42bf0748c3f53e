import json
import threading

import pytest

from snapscalp.capture.capture import CaptureResult, Region


SAMPLE_RESPONSE = {
    "decision": "Long",
    "confidence": 77,
    "reason": "breakout",
    "scenarios": [
        {
            "side": "Long",
            "entry": "100",
            "stop": "98",
            "targets": ["105", "110", "115", "120"],
        }
    ],
    "levels": {"support": ["95"], "resistance": ["105", "110", "120"]},
}


class FakeCapture:
    def __init__(self, result=None):
        self.result = result or CaptureResult(success=True, image_bytes=b"png-bytes", crop_area=(0, 0, 10, 10))
        self.calls = []

    def capture(self, region):
        self.calls.append(region)
        return self.result


class FakeProvider:
    """Stands in for an AnalysisProvider; can be made to block until released."""

    def __init__(self, name="openai", response=None, supports_vision=True, error=None, block=False):
        self.name = name
        self.supports_vision = supports_vision
        self.model_id = f"{name}-model"
        self.response = response if response is not None else json.dumps(SAMPLE_RESPONSE)
        self.error = error
        self.calls = []
        self.started = threading.Event()
        self.release = threading.Event()
        if not block:
            self.release.set()

    def info(self):
        return {"provider": self.name, "has_vision_support": self.supports_vision, "model_name": self.model_id}

    def analyze(self, prompt, image_bytes=None):
        self.calls.append((prompt, image_bytes))
        self.started.set()
        self.release.wait(5)
        if self.error:
            raise self.error
        return self.response


class RecordingSink:
    def __init__(self):
        self.statuses = []
        self.analyses = []

    def report_status(self, text):
        self.statuses.append(text)

    def report_analysis(self, payload, image_bytes):
        self.analyses.append((payload, image_bytes))


class ProviderFactory:
    """Returns pre-built FakeProviders by id, records every resolution."""

    def __init__(self, **providers):
        self.providers = providers
        self.resolved = []

    def __call__(self, provider_id, api_key, model=None, prompt_config=None):
        from snapscalp.errors import MissingCredential, UnsupportedProvider
        if provider_id not in self.providers:
            raise UnsupportedProvider(provider_id)
        if not api_key:
            raise MissingCredential(provider_id)
        self.resolved.append(provider_id)
        return self.providers[provider_id]


@pytest.fixture
def sample_response():
    return dict(SAMPLE_RESPONSE)


@pytest.fixture
def region():
    return Region(10, 20, 300, 200)


@pytest.fixture
def fake_capture():
    return FakeCapture()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def credentials():
    return {"openai": "sk-openai", "claude": "sk-claude", "perplexity": ""}
