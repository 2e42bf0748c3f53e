import base64
import logging
import time
import traceback
from abc import ABC, abstractmethod
from typing import Dict, Optional

import anthropic
from openai import OpenAI

from ..errors import MissingCredential, ProviderError, UnsupportedProvider
from .prompt_config import PromptConfig

logger = logging.getLogger(__name__)

TEMPERATURE = 0.1
MAX_TOKENS = 400


class AnalysisProvider(ABC):
    """One AI service that can turn the analysis prompt (and maybe a chart image) into text."""

    name = ""
    supports_vision = False
    default_model = ""

    def __init__(self, api_key, model=None, prompt_config=None, max_retries=2,
                 timeout=30, backoff=1):
        if not api_key:
            raise MissingCredential(self.name)
        self.api_key = api_key
        self.model = model or self.default_model
        self.prompt_config = prompt_config or PromptConfig()
        self.max_retries = max(1, max_retries)
        self.timeout = timeout
        self.backoff = backoff

    @property
    def model_id(self) -> str:
        return self.model

    def info(self) -> Dict:
        return {
            "provider": self.name,
            "has_vision_support": self.supports_vision,
            "model_name": self.model_id,
        }

    def analyze(self, prompt: str, image_bytes: Optional[bytes] = None) -> str:
        """Send one analysis request and return the raw response text.

        Retries failed calls with exponential backoff and raises ProviderError
        once the attempts are exhausted.
        """
        logger.info(f"Starting analysis with provider: {self.name} ({self.model_id})")
        logger.debug(f"Image data length: {len(image_bytes) if image_bytes else 0} bytes")
        if self.supports_vision and image_bytes is None:
            raise ProviderError(self.name, "no image to analyze")
        backoff = self.backoff
        for attempt in range(self.max_retries):
            try:
                content = self._request(prompt, image_bytes)
                break
            except Exception as e:
                logger.error(f"Error calling {self.name} on attempt {attempt + 1}/{self.max_retries}: {e}")
                logger.debug(traceback.format_exc())
                if attempt < self.max_retries - 1:
                    logger.info(f"Retrying in {backoff} seconds...")
                    time.sleep(backoff)
                    backoff *= 2
                else:
                    raise ProviderError(self.name, str(e)) from e

        if not content:
            logger.warning(f"{self.name} returned an empty response")
            return ""
        logger.debug(f"Raw response from {self.name}: '{content}'")
        return content

    @abstractmethod
    def _request(self, prompt: str, image_bytes: Optional[bytes]) -> str:
        ...

    @staticmethod
    def _b64(image_bytes: bytes) -> str:
        return base64.b64encode(image_bytes).decode("utf-8")


class OpenAIProvider(AnalysisProvider):
    name = "openai"
    supports_vision = True
    default_model = "gpt-4o"
    base_url = None

    def __init__(self, api_key, **kwargs):
        super().__init__(api_key, **kwargs)
        if self.base_url:
            self.client = OpenAI(api_key=self.api_key, base_url=self.base_url)
        else:
            self.client = OpenAI(api_key=self.api_key)

    def _messages(self, prompt, image_bytes):
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:image/png;base64,{self._b64(image_bytes)}"},
                    },
                ],
            }
        ]

    def _request(self, prompt, image_bytes):
        response = self.client.chat.completions.create(
            model=self.model,
            messages=self._messages(prompt, image_bytes),
            temperature=TEMPERATURE,
            max_tokens=MAX_TOKENS,
            timeout=self.timeout,
        )
        if not response or not getattr(response, "choices", None):
            logger.error(f"{self.name} API returned no completion or invalid choices structure.")
            return ""
        return response.choices[0].message.content


class PerplexityProvider(OpenAIProvider):
    """Text-only provider behind Perplexity's OpenAI-compatible endpoint."""

    name = "perplexity"
    supports_vision = False
    default_model = "sonar-pro"
    base_url = "https://api.perplexity.ai"

    def _messages(self, prompt, image_bytes):
        # image is ignored, the model only gets the prompt plus a note
        return [{"role": "user", "content": self.prompt_config.get_text_only_prompt(prompt)}]


class ClaudeProvider(AnalysisProvider):
    name = "claude"
    supports_vision = True
    default_model = "claude-3-5-sonnet-20241022"

    def __init__(self, api_key, **kwargs):
        super().__init__(api_key, **kwargs)
        self.client = anthropic.Anthropic(api_key=self.api_key)

    def _request(self, prompt, image_bytes):
        response = self.client.messages.create(
            model=self.model,
            max_tokens=MAX_TOKENS,
            temperature=TEMPERATURE,
            timeout=self.timeout,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": "image/png",
                                "data": self._b64(image_bytes),
                            },
                        },
                        {"type": "text", "text": prompt},
                    ],
                }
            ],
        )
        if not response.content:
            return ""
        return response.content[0].text


PROVIDERS = {
    OpenAIProvider.name: OpenAIProvider,
    ClaudeProvider.name: ClaudeProvider,
    PerplexityProvider.name: PerplexityProvider,
}


def create_provider(provider_id, api_key, model=None, **kwargs) -> AnalysisProvider:
    """Resolve a provider id and credential into a ready provider instance."""
    provider_id = (provider_id or "").lower()
    provider_cls = PROVIDERS.get(provider_id)
    if provider_cls is None:
        raise UnsupportedProvider(provider_id)
    if not api_key:
        raise MissingCredential(provider_id)
    provider = provider_cls(api_key, model=model, **kwargs)
    logger.info(f"LLM provider initialized: {provider_id} ({provider.model_id})")
    return provider
