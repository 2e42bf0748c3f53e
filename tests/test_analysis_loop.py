"""Tests for the analysis loop state machine and cycle handling."""

import asyncio
import threading

import pytest

from snapscalp.capture.capture import CaptureResult
from snapscalp.decision.normalizer import Decision
from snapscalp.errors import MissingCredential, NoRegionConfigured, PreconditionError, ProviderError
from snapscalp.loop.analysis_loop import AnalysisLoop

from conftest import FakeCapture, FakeProvider, ProviderFactory


def make_loop(sink, credentials, capture=None, factory=None, provider_id="openai",
              period=10.0, probe_delay=0.05):
    factory = factory or ProviderFactory(openai=FakeProvider("openai"), claude=FakeProvider("claude"))
    return AnalysisLoop(
        capture or FakeCapture(),
        sink,
        credentials,
        provider_id=provider_id,
        period=period,
        probe_delay=probe_delay,
        provider_factory=factory,
    )


async def wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


# ---------------------------------------------------------------------------
# start preconditions
# ---------------------------------------------------------------------------

class TestStartPreconditions:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["sk-openai", ""])
    async def test_no_region_fails_regardless_of_credential(self, sink, key):
        loop = make_loop(sink, {"openai": key})
        with pytest.raises(NoRegionConfigured):
            loop.start()
        assert loop.running is False

    @pytest.mark.asyncio
    async def test_missing_credential_fails_with_region(self, sink, region):
        loop = make_loop(sink, {"openai": ""})
        loop.set_region(region)
        with pytest.raises(MissingCredential):
            loop.start()
        assert loop.running is False
        assert loop._timers == []

    @pytest.mark.asyncio
    async def test_missing_credential_is_a_precondition_error(self, sink):
        loop = make_loop(sink, {})
        with pytest.raises(PreconditionError):
            loop.start()

    @pytest.mark.asyncio
    async def test_start_with_region_and_credential(self, sink, credentials, region):
        loop = make_loop(sink, credentials)
        loop.set_region(region)
        loop.start()
        try:
            assert loop.running is True
            assert len(loop._timers) == 2
        finally:
            loop.stop()
        assert loop.running is False


# ---------------------------------------------------------------------------
# scheduling
# ---------------------------------------------------------------------------

class TestScheduling:
    @pytest.mark.asyncio
    async def test_probe_fires_after_delay(self, sink, credentials, region):
        capture = FakeCapture()
        loop = make_loop(sink, credentials, capture=capture, probe_delay=0.1)
        loop.set_region(region)
        loop.start()
        try:
            await asyncio.sleep(0.03)
            assert capture.calls == []
            await wait_for(lambda: len(sink.analyses) == 1)
            assert capture.calls == [region]
            assert sink.statuses[0] == "Capturing (immediate)"
            assert sink.statuses[1] == "Analyzing (immediate)"
            assert sink.statuses[2].startswith("Updated at ")
        finally:
            loop.stop()

    @pytest.mark.asyncio
    async def test_recurring_cycles(self, sink, credentials, region):
        loop = make_loop(sink, credentials, period=0.05, probe_delay=0.01)
        loop.set_region(region)
        loop.start()
        try:
            await wait_for(lambda: len(sink.analyses) >= 3)
            assert "Capturing" in sink.statuses
        finally:
            loop.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_schedule(self, sink, credentials, region):
        capture = FakeCapture()
        loop = make_loop(sink, credentials, capture=capture, period=0.02, probe_delay=0.01)
        loop.set_region(region)
        loop.start()
        loop.stop()
        await asyncio.sleep(0.1)
        assert capture.calls == []
        assert sink.analyses == []

    @pytest.mark.asyncio
    async def test_stop_then_start_resets_probe_delay(self, sink, credentials, region):
        capture = FakeCapture()
        loop = make_loop(sink, credentials, capture=capture, probe_delay=0.1)
        loop.set_region(region)
        loop.start()
        await asyncio.sleep(0.07)
        loop.stop()
        loop.start()
        try:
            # the first probe would have fired by now, the restarted one must not have
            await asyncio.sleep(0.06)
            assert capture.calls == []
            await wait_for(lambda: len(capture.calls) == 1)
        finally:
            loop.stop()

    @pytest.mark.asyncio
    async def test_overlapping_cycle_is_dropped(self, sink, credentials, region):
        provider = FakeProvider("openai", block=True)
        factory = ProviderFactory(openai=provider)
        loop = make_loop(sink, credentials, factory=factory)
        loop.set_region(region)
        loop.running = True

        first = loop.launch_cycle()
        await wait_for(provider.started.is_set)
        assert loop.busy is True
        assert loop.launch_cycle() is None
        assert loop.cycles_dropped == 1

        provider.release.set()
        await first
        assert loop.busy is False
        assert len(provider.calls) == 1
        assert len(sink.analyses) == 1

    @pytest.mark.asyncio
    async def test_launch_skipped_when_not_running(self, sink, credentials, region):
        loop = make_loop(sink, credentials)
        loop.set_region(region)
        assert loop.launch_cycle() is None
        assert sink.statuses == []


# ---------------------------------------------------------------------------
# cycle
# ---------------------------------------------------------------------------

class TestCycle:
    @pytest.mark.asyncio
    async def test_cycle_publishes_payload_and_image(self, sink, credentials, region):
        provider = FakeProvider("openai")
        loop = make_loop(sink, credentials, factory=ProviderFactory(openai=provider))
        loop.set_region(region)

        payload = await loop.run_once()

        assert payload.decision is Decision.LONG
        assert payload.scenarios[0].targets == ["105", "110", "115"]
        assert sink.analyses == [(payload, b"png-bytes")]
        prompt, image = provider.calls[0]
        assert image == b"png-bytes"
        assert "JSON" in prompt
        assert loop.running is False

    @pytest.mark.asyncio
    async def test_capture_failure_skips_provider(self, sink, credentials, region):
        provider = FakeProvider("openai")
        capture = FakeCapture(CaptureResult(success=False, error="screen locked"))
        loop = make_loop(sink, credentials, capture=capture, factory=ProviderFactory(openai=provider))
        loop.set_region(region)

        assert await loop.run_once() is None
        assert provider.calls == []
        assert sink.analyses == []
        assert sink.statuses[-1] == "Capture failed: screen locked"

    @pytest.mark.asyncio
    async def test_provider_error_reported_and_loop_keeps_running(self, sink, credentials, region):
        provider = FakeProvider("openai", error=ProviderError("openai", "401 unauthorized"))
        loop = make_loop(sink, credentials, factory=ProviderFactory(openai=provider))
        loop.set_region(region)
        loop.running = True

        assert await loop.run_cycle() is None
        assert loop.running is True
        assert loop.busy is False
        assert sink.statuses[-1] == "Analysis error (openai)"
        assert sink.analyses == []

    @pytest.mark.asyncio
    async def test_unexpected_error_reported_generically(self, sink, credentials, region):
        capture = FakeCapture()

        def broken(region):
            raise RuntimeError("mss backend crashed")

        capture.capture = broken
        loop = make_loop(sink, credentials, capture=capture)
        loop.set_region(region)
        loop.running = True

        assert await loop.run_cycle() is None
        assert sink.statuses[-1] == "Analysis error"
        assert loop.busy is False

    @pytest.mark.asyncio
    async def test_text_only_provider_gets_no_image(self, sink, region):
        provider = FakeProvider("perplexity", response="The trend looks bullish.", supports_vision=False)
        loop = make_loop(sink, {"perplexity": "pplx"}, provider_id="perplexity",
                         factory=ProviderFactory(perplexity=provider))
        loop.set_region(region)

        payload = await loop.run_once()

        assert provider.calls[0][1] is None
        assert payload.decision is Decision.WAIT
        assert payload.confidence == 50
        assert payload.reason == "Text-only analysis - image vision not supported"
        # the preview still shows what was captured
        assert sink.analyses[0][1] == b"png-bytes"

    @pytest.mark.asyncio
    async def test_result_discarded_when_stopped_mid_cycle(self, sink, credentials, region):
        provider = FakeProvider("openai", block=True)
        loop = make_loop(sink, credentials, factory=ProviderFactory(openai=provider), probe_delay=10.0)
        loop.set_region(region)
        loop.start()
        task = loop.launch_cycle()
        await wait_for(provider.started.is_set)

        loop.stop()
        provider.release.set()
        assert await task is None
        assert sink.analyses == []
        assert not any(s.startswith("Updated at") for s in sink.statuses)

    @pytest.mark.asyncio
    async def test_stop_during_capture_skips_analysis(self, sink, credentials, region):
        started, release = threading.Event(), threading.Event()

        class SlowCapture(FakeCapture):
            def capture(self, region):
                started.set()
                release.wait(2)
                return super().capture(region)

        provider = FakeProvider("openai")
        loop = make_loop(sink, credentials, capture=SlowCapture(),
                         factory=ProviderFactory(openai=provider), probe_delay=10.0)
        loop.set_region(region)
        loop.start()
        task = loop.launch_cycle()
        await wait_for(started.is_set)

        loop.stop()
        release.set()
        assert await task is None
        assert provider.calls == []
        assert "Analyzing" not in sink.statuses


# ---------------------------------------------------------------------------
# providers
# ---------------------------------------------------------------------------

class TestProviderSwitch:
    def test_switch_to_same_provider_is_noop(self, sink, credentials):
        factory = ProviderFactory(openai=FakeProvider("openai"), claude=FakeProvider("claude"))
        loop = make_loop(sink, credentials, factory=factory)
        assert loop.switch_provider("openai") is False
        assert factory.resolved == ["openai"]

    def test_switch_without_credential_keeps_current(self, sink, credentials):
        factory = ProviderFactory(openai=FakeProvider("openai"), perplexity=FakeProvider("perplexity"))
        loop = make_loop(sink, credentials, factory=factory)
        with pytest.raises(MissingCredential):
            loop.switch_provider("perplexity")
        assert loop.provider_id == "openai"
        assert loop.provider.name == "openai"

    def test_get_config(self, sink, credentials):
        loop = make_loop(sink, credentials)
        config = loop.get_config()
        assert config["provider"] == "openai"
        assert config["has_credential"] is True
        assert config["provider_info"]["model_name"] == "openai-model"

    def test_get_config_without_credential(self, sink):
        loop = make_loop(sink, {"openai": ""})
        config = loop.get_config()
        assert config["has_credential"] is False
        assert config["provider_info"] is None

    @pytest.mark.asyncio
    async def test_switch_while_running_applies_to_next_cycle(self, sink, credentials, region):
        old = FakeProvider("openai", block=True)
        new = FakeProvider("claude", response='{"decision": "Short", "confidence": 60}')
        loop = make_loop(sink, credentials, factory=ProviderFactory(openai=old, claude=new),
                         probe_delay=10.0)
        loop.set_region(region)
        loop.start()
        try:
            in_flight = loop.launch_cycle()
            await wait_for(old.started.is_set)

            assert loop.switch_provider("claude") is True
            old.release.set()
            first = await in_flight
            assert first.decision is Decision.LONG
            assert new.calls == []

            second = await loop.launch_cycle()
            assert second.decision is Decision.SHORT
            assert len(old.calls) == 1
            assert len(new.calls) == 1
            assert [p.decision for p, _ in sink.analyses] == [Decision.LONG, Decision.SHORT]
        finally:
            loop.stop()
