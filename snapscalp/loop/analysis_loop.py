import asyncio
import datetime
import logging

from ..decision.normalizer import normalize
from ..decision.prompt_config import PromptConfig
from ..decision.providers import create_provider
from ..errors import MissingCredential, NoRegionConfigured, ProviderError, UnsupportedProvider

logger = logging.getLogger(__name__)

DEFAULT_PERIOD = 30.0
DEFAULT_PROBE_DELAY = 2.0


class AnalysisLoop:
    """
    Periodic capture -> analyze -> normalize -> publish orchestrator.

    One instance per session owns the loop state (running flag, region and
    active provider). Timers run on the asyncio event loop, blocking work
    (screen grab, provider HTTP call) is pushed to the default executor.
    At most one cycle is in flight; ticks that fire while a cycle is busy are
    dropped, not queued.
    """

    def __init__(self, capture, sink, credentials, provider_id="openai",
                 period=DEFAULT_PERIOD, probe_delay=DEFAULT_PROBE_DELAY,
                 prompt_config=None, provider_factory=create_provider, models=None):
        self.capture = capture
        self.sink = sink
        self.credentials = dict(credentials or {})
        self.period = period
        self.probe_delay = probe_delay
        self.prompt_config = prompt_config or PromptConfig()
        self.provider_factory = provider_factory
        self.models = dict(models or {})

        self.running = False
        self.region = None
        self.provider_id = (provider_id or "openai").lower()
        self.provider = None
        self.busy = False
        self.cycles_dropped = 0

        self._timers = []
        self._cycle_tasks = set()

        try:
            self.provider = self._resolve_provider(self.provider_id)
        except (MissingCredential, UnsupportedProvider) as e:
            logger.error(f"Failed to initialize LLM provider: {e}")

    # -- state ------------------------------------------------------------

    def has_credential(self, provider_id=None):
        return bool(self.credentials.get(provider_id or self.provider_id))

    def set_region(self, region):
        self.region = region
        logger.info(f"Capture area set: {region}")

    def _resolve_provider(self, provider_id):
        return self.provider_factory(
            provider_id,
            self.credentials.get(provider_id, ""),
            model=self.models.get(provider_id),
            prompt_config=self.prompt_config,
        )

    def switch_provider(self, provider_id):
        """Make ``provider_id`` the active provider.

        Returns False when it already is. Raises MissingCredential or
        UnsupportedProvider and leaves the current provider in place otherwise.
        Cycles already in flight keep the provider they started with.
        """
        provider_id = (provider_id or "").lower()
        if provider_id == self.provider_id and self.provider is not None:
            return False
        provider = self._resolve_provider(provider_id)
        self.provider_id = provider_id
        self.provider = provider
        logger.info(f"Switched LLM provider to {provider_id}")
        return True

    def get_config(self):
        return {
            "provider": self.provider_id,
            "provider_info": self.provider.info() if self.provider else None,
            "has_credential": self.has_credential(),
        }

    # -- scheduling -------------------------------------------------------

    def _check_preconditions(self):
        if self.region is None:
            raise NoRegionConfigured()
        if not self.has_credential():
            raise MissingCredential(self.provider_id)
        if self.provider is None:
            self.provider = self._resolve_provider(self.provider_id)

    def start(self):
        """Idle -> Running. Must be called from inside the event loop."""
        self._check_preconditions()

        if self.running:
            logger.info("Analysis already running, restarting schedule")
            self._cancel_timers()

        loop = asyncio.get_running_loop()
        self.running = True
        self._timers = [
            loop.create_task(self._probe_after(self.probe_delay)),
            loop.create_task(self._tick_every(self.period)),
        ]
        logger.info(
            f"Analysis started with {self.provider_id}: probe in {self.probe_delay}s, "
            f"then every {self.period}s"
        )

    def stop(self):
        """Running -> Idle. In-flight cycles finish but their results are discarded."""
        self.running = False
        self._cancel_timers()
        logger.info("Analysis stopped")

    def _cancel_timers(self):
        for timer in self._timers:
            timer.cancel()
        self._timers = []

    async def _probe_after(self, delay):
        await asyncio.sleep(delay)
        self.launch_cycle(immediate=True)

    async def _tick_every(self, period):
        while True:
            await asyncio.sleep(period)
            self.launch_cycle()

    def launch_cycle(self, immediate=False):
        """Schedule one cycle as a task, or return None if it is skipped."""
        if not self.running:
            logger.debug("Loop not running, skipping cycle")
            return None
        if self.busy:
            self.cycles_dropped += 1
            logger.warning("Previous analysis cycle still in flight, dropping this one")
            return None
        task = asyncio.get_running_loop().create_task(self.run_cycle(immediate=immediate))
        self._cycle_tasks.add(task)
        task.add_done_callback(self._cycle_tasks.discard)
        return task

    async def run_once(self):
        """Run a single cycle without scheduling anything."""
        self._check_preconditions()
        was_running = self.running
        self.running = True
        try:
            return await self.run_cycle(immediate=True)
        finally:
            self.running = was_running

    async def wait_idle(self):
        """Wait for every in-flight cycle to complete."""
        if self._cycle_tasks:
            await asyncio.gather(*list(self._cycle_tasks), return_exceptions=True)

    # -- cycle ------------------------------------------------------------

    async def run_cycle(self, immediate=False):
        """Run one capture -> analyze -> publish pass. Never raises."""
        if self.busy:
            logger.warning("Analysis cycle already in flight, skipping")
            return None
        self.busy = True
        provider = self.provider
        region = self.region
        suffix = " (immediate)" if immediate else ""
        loop = asyncio.get_running_loop()
        try:
            self.sink.report_status(f"Capturing{suffix}")
            screenshot = await loop.run_in_executor(None, self.capture.capture, region)
            if not screenshot.success:
                logger.warning(f"Screenshot failed: {screenshot.error}")
                self.sink.report_status(f"Capture failed: {screenshot.error}")
                return None
            if not self.running:
                logger.info("Loop stopped during capture, skipping analysis")
                return None

            self.sink.report_status(f"Analyzing{suffix}")
            image = screenshot.image_bytes if provider.supports_vision else None
            raw = await loop.run_in_executor(
                None, provider.analyze, self.prompt_config.get_analysis_prompt(), image
            )
            if provider.supports_vision:
                payload = normalize(raw)
            else:
                payload = normalize(raw, fallback_reason=self.prompt_config.text_only_fallback_reason)

            if not self.running:
                logger.info("Loop stopped while cycle was in flight, discarding result")
                return None

            self.sink.report_analysis(payload, screenshot.image_bytes)
            time_string = datetime.datetime.now().strftime("%H:%M:%S")
            self.sink.report_status(f"Updated at {time_string}{suffix}")
            logger.info(f"Analysis published: {payload.decision.value} ({payload.confidence})")
            return payload
        except ProviderError as e:
            logger.error(f"Analysis loop error: {e}")
            self.sink.report_status(f"Analysis error ({e.provider})")
        except Exception:
            logger.exception("Analysis loop error")
            self.sink.report_status("Analysis error")
        finally:
            self.busy = False
        return None
