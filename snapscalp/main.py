import asyncio
import logging
import argparse
from .config import Config
from .capture.capture import Capture, Region
from .errors import PreconditionError
from .loop.analysis_loop import AnalysisLoop
from .loop.control import ControlSurface
from .presentation.sink import ConsoleSink


async def run_session(control, analysis_loop, once=False, duration=None):
    """
    Run the analysis loop until `duration` seconds elapse (forever if None).
    With `once`, run a single cycle and return its payload.
    """
    if once:
        try:
            return await analysis_loop.run_once()
        except PreconditionError as e:
            logging.error(f"Cannot run analysis: {e}")
            control.sink.report_status(str(e))
            return None

    result = control.start()
    if not result["success"]:
        return None
    try:
        if duration is not None:
            await asyncio.sleep(duration)
        else:
            await asyncio.Event().wait()  # until interrupted
    finally:
        control.stop()
        await analysis_loop.wait_idle()
    return None


def build(cfg):
    capture = Capture(scale_factor=cfg.scale_factor)
    sink = ConsoleSink(screenshot_dir=cfg.screenshot_dir)
    analysis_loop = AnalysisLoop(
        capture,
        sink,
        cfg.api_keys,
        provider_id=cfg.provider,
        period=cfg.period,
        probe_delay=cfg.probe_delay,
        models={provider: cfg.model_for(provider) for provider in cfg.api_keys},
    )
    control = ControlSurface(analysis_loop, sink, area_selector=capture.select_area)
    return control, analysis_loop


def main(cfg_override=None):
    cfg = Config()

    # Override config with CLI args if provided
    if cfg_override:
        for key, value in vars(cfg_override).items():
            if value is not None and hasattr(cfg, key):
                setattr(cfg, key, value)

    # Configure logging
    logging.basicConfig(level=cfg.log_level, format='%(asctime)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s')

    control, analysis_loop = build(cfg)
    control.check_credentials()

    if cfg_override and getattr(cfg_override, "region", None):
        control.set_region(Region.parse(cfg_override.region))
    elif cfg_override and getattr(cfg_override, "select_area", False):
        control.select_area()

    once = bool(cfg_override and getattr(cfg_override, "once", False))
    duration = getattr(cfg_override, "duration", None) if cfg_override else None
    try:
        return asyncio.run(run_session(control, analysis_loop, once=once, duration=duration))
    except KeyboardInterrupt:
        logging.info("Interrupted, exiting.")
        return None


def main_cli():
    parser = argparse.ArgumentParser(description="SnapScalp chart analysis overlay")
    parser.add_argument("--provider", type=str, choices=["openai", "claude", "perplexity"], help="LLM provider to analyze with.")
    parser.add_argument("--region", type=str, help="Capture area as x,y,width,height in logical pixels.")
    parser.add_argument("--select-area", dest="select_area", action="store_true", help="Drag a rectangle over the screen to set the capture area.")
    parser.add_argument("--period", type=float, help="Seconds between analysis cycles.")
    parser.add_argument("--probe_delay", type=float, help="Seconds before the first cycle after start.")
    parser.add_argument("--scale_factor", type=float, help="Display pixel density; detected when omitted.")
    parser.add_argument("--screenshot_dir", type=str, help="Directory for the latest capture preview.")
    parser.add_argument("--log_level", type=str, choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], help="Logging level.")
    parser.add_argument("--once", action="store_true", help="Run a single analysis cycle and exit.")
    parser.add_argument("--duration", type=float, help="Stop after this many seconds.")

    args = parser.parse_args()
    main(cfg_override=args)

if __name__ == "__main__":
    main_cli()
