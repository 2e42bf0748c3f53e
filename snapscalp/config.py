import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from dotenv import find_dotenv
from dotenv import dotenv_values

logger = logging.getLogger(__name__)

# Env files checked next to the working directory, later files win
ENV_FILES = ("dev.env", "local.env")

# Key names used inside dev.env / local.env
ENV_FILE_KEYS = {
    "openai": "openai_key",
    "claude": "claudeai_key",
    "perplexity": "perplexityai_key",
}

# Environment variables used when the env files don't provide a key
ENV_VAR_KEYS = {
    "openai": "OPENAI_API_KEY",
    "claude": "ANTHROPIC_API_KEY",
    "perplexity": "PERPLEXITY_API_KEY",
}


def _optional_float(raw):
    if raw is None or raw == "" or raw.lower() == "auto":
        return None
    return float(raw)


class Config:
    def __init__(self, env_dir=None):
        # Load .env at project root (if present)
        dotenv_path = find_dotenv(usecwd=True)
        if dotenv_path:
            load_dotenv(dotenv_path, override=False)
            logger.info(f"Loaded environment variables from {dotenv_path}")

        self.env_dir = Path(env_dir) if env_dir else Path.cwd()
        self.api_keys = self._load_api_keys()

        self.provider = os.getenv("LLM_PROVIDER", "openai").lower()
        _raw_log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.log_level = getattr(logging, _raw_log_level, logging.INFO)
        self.period = float(os.getenv("ANALYSIS_PERIOD", 30.0))  # seconds between cycles
        self.probe_delay = float(os.getenv("PROBE_DELAY", 2.0))  # delay of the first cycle after start
        self.scale_factor = _optional_float(os.getenv("SCALE_FACTOR"))
        self.screenshot_dir = os.getenv("SCREENSHOT_DIR") or None
        self.openai_model = os.getenv("OPENAI_MODEL", "gpt-4o")
        self.claude_model = os.getenv("CLAUDE_MODEL", "claude-3-5-sonnet-20241022")
        self.perplexity_model = os.getenv("PERPLEXITY_MODEL", "sonar-pro")

        logger.debug(
            f"Config initialized with provider={self.provider}, "
            f"keys present: { {k: bool(v) for k, v in self.api_keys.items()} }"
        )

    def _load_api_keys(self):
        keys = {provider: "" for provider in ENV_FILE_KEYS}
        for env_file in ENV_FILES:
            env_path = self.env_dir / env_file
            if not env_path.exists():
                continue
            try:
                values = dotenv_values(env_path)
            except (OSError, UnicodeDecodeError) as e:
                logger.error(f"Error reading {env_file}: {e}")
                continue
            logger.info(f"Loaded API keys from {env_path}")
            for provider, file_key in ENV_FILE_KEYS.items():
                value = (values.get(file_key) or "").strip()
                if value:
                    keys[provider] = value

        # Fallback to environment variables
        for provider, env_key in ENV_VAR_KEYS.items():
            keys[provider] = keys[provider] or os.getenv(env_key, "")
        return keys

    def model_for(self, provider_id):
        return {
            "openai": self.openai_model,
            "claude": self.claude_model,
            "perplexity": self.perplexity_model,
        }.get(provider_id)
