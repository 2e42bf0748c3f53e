import io
import logging
import os
import sys

from PIL import Image

logger = logging.getLogger(__name__)

EMPTY = "—"
PREVIEW_FILENAME = "latest_capture.png"


class PresentationSink:
    """Push-only UI collaborator. Implementations must not block."""

    def report_status(self, text):
        raise NotImplementedError

    def report_analysis(self, payload, image_bytes):
        raise NotImplementedError


def format_banner(payload):
    reason = payload.reason or EMPTY
    return f"{payload.decision.value.upper():<5}  {payload.confidence:>3}  {reason}"


def format_scenarios(payload):
    rows = [("Side", "Entry", "Stop", "T1", "T2", "T3")]
    for scenario in payload.scenarios:
        targets = list(scenario.targets) + [EMPTY] * (3 - len(scenario.targets))
        side = scenario.side.value if scenario.side else ""
        rows.append((side, scenario.entry, scenario.stop, *targets[:3]))
    widths = [max(len(row[i]) for row in rows) for i in range(6)]
    return "\n".join(
        "  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip()
        for row in rows
    )


def format_levels(payload):
    support = " ".join(payload.levels.support[:2]) or EMPTY
    resistance = " ".join(payload.levels.resistance[:2]) or EMPTY
    return f"S {support}", f"R {resistance}"


class ConsoleSink(PresentationSink):
    """Render statuses and analyses as text, keep the last capture as a preview file."""

    def __init__(self, stream=None, screenshot_dir=None):
        self.stream = stream or sys.stdout
        self.screenshot_dir = screenshot_dir
        self.last_status = None
        self.last_payload = None

    def _write(self, text):
        self.stream.write(text + "\n")
        self.stream.flush()

    def report_status(self, text):
        self.last_status = text
        self._write(f"[status] {text}")

    def report_analysis(self, payload, image_bytes):
        self.last_payload = payload
        support, resistance = format_levels(payload)
        self._write(format_banner(payload))
        self._write(format_scenarios(payload))
        self._write(f"{support}    {resistance}")
        if image_bytes and self.screenshot_dir:
            self.save_preview(image_bytes)

    def save_preview(self, image_bytes):
        try:
            os.makedirs(self.screenshot_dir, exist_ok=True)
            path = os.path.join(self.screenshot_dir, PREVIEW_FILENAME)
            Image.open(io.BytesIO(image_bytes)).save(path)
            logger.debug(f"Preview written to {path}")
            return path
        except (OSError, ValueError) as e:
            logger.error(f"Could not write preview image: {e}")
            return None
