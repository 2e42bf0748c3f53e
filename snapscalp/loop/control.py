import logging

from ..errors import PreconditionError

logger = logging.getLogger(__name__)


class ControlSurface:
    """Result-returning entry points for the UI, on top of one AnalysisLoop."""

    def __init__(self, analysis_loop, sink, area_selector=None):
        self.loop = analysis_loop
        self.sink = sink
        self.area_selector = area_selector

    def check_credentials(self):
        if not self.loop.has_credential():
            self.sink.report_status(f"Missing API key for {self.loop.provider_id}")
            return False
        return True

    def select_area(self):
        if self.area_selector is None:
            return {"success": False, "error": "No area selector available"}
        self.sink.report_status("Drag to select chart area...")
        try:
            region = self.area_selector()
        except Exception as e:
            logger.error(f"Area selection error: {e}")
            self.sink.report_status("Area selection failed")
            return {"success": False, "error": str(e)}
        if region is None:
            self.sink.report_status("Area selection cancelled")
            return {"success": False, "cancelled": True}
        return self.set_region(region)

    def set_region(self, region):
        self.loop.set_region(region)
        self.sink.report_status(f"Area set: {round(region.width)}x{round(region.height)}")
        return {"success": True, "region": region}

    def get_capture_area(self):
        return self.loop.region

    def start(self):
        try:
            self.loop.start()
        except PreconditionError as e:
            logger.error(f"Start analysis error: {e}")
            self.sink.report_status(f"Failed to start analysis: {e}")
            return {"success": False, "error": str(e)}
        self.sink.report_status(f"Capturing every {self.loop.period:g}s")
        return {"success": True}

    def stop(self):
        self.loop.stop()
        self.sink.report_status("Stopped")
        return {"success": True}

    def switch_provider(self, provider_id):
        provider_id = (provider_id or "").lower()
        self.sink.report_status(f"Switching to {provider_id}...")
        try:
            self.loop.switch_provider(provider_id)
        except PreconditionError as e:
            logger.error(f"Error switching LLM provider: {e}")
            self.sink.report_status(f"Failed to switch: {e}")
            return {"success": False, "error": str(e)}
        self.sink.report_status(f"Switched to {provider_id}")
        return {"success": True, "provider": provider_id}

    def get_config(self):
        return self.loop.get_config()
