"""
Generation service clients.

Handles communication with OpenAI-compatible APIs (OpenAI, OpenRouter,
Anthropic's compatibility endpoint, local servers) and Ollama.
"""

import logging
import re
from typing import Protocol

import ollama
from dotenv import load_dotenv
from openai import OpenAI

from reprogrammer.config.models import LLMConfig, LLMProvider
from reprogrammer.errors import GenerationServiceError

load_dotenv()

logger = logging.getLogger(__name__)

CONNECTION_PROBE = [{"role": "user", "content": "Reply with the single word OK."}]


def strip_markdown_code_blocks(text: str) -> str:
    """
    Strip markdown code blocks from a model response.

    Handles formats like:
    - ```java\\ncode\\n```
    - ```\\ncode\\n```
    - ``` code ```

    Args:
        text: Raw text that may contain markdown formatting

    Returns:
        Clean code without markdown wrappers
    """
    stripped = text.strip()

    # ```java\n...\n``` or ```\n...\n```
    pattern = r"^```(?:[\w+#.-]+)?[ \t]*\n?(.*?)\n?```$"
    match = re.match(pattern, stripped, re.DOTALL)
    if match:
        return match.group(1)

    # Opening fence whose closing fence was cut off
    if stripped.startswith("```"):
        lines = stripped.split("\n", 1)
        return lines[1] if len(lines) > 1 else ""

    return text


class GenerationService(Protocol):
    """Anything that turns a conversation into generated text."""

    def generate(self, conversation: list[dict[str, str]], max_output_tokens: int) -> str: ...

    def check_connection(self) -> bool: ...


class OpenAICompatibleClient:
    """Client for OpenAI-compatible APIs (OpenAI, OpenRouter, Claude, custom)."""

    OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
    CLAUDE_BASE_URL = "https://api.anthropic.com/v1/"

    def __init__(self, config: LLMConfig):
        self.config = config

        if config.provider == LLMProvider.CUSTOM:
            if not config.api_url:
                raise GenerationServiceError("api_url is required for the custom provider")
            # Local servers usually ignore the key but the SDK insists on one.
            api_key = config.api_key or "not-needed"
        else:
            api_key = config.api_key
            if not api_key:
                raise GenerationServiceError(
                    f"API key required for provider '{config.provider.value}' "
                    "(set llm.api_key or the provider's environment variable)"
                )

        client_kwargs = {"api_key": api_key, "timeout": config.timeout}
        base_url = self._resolve_base_url()
        if base_url is not None:
            client_kwargs["base_url"] = base_url
        self.client = OpenAI(**client_kwargs)

    def _resolve_base_url(self) -> str | None:
        if self.config.api_url:
            return self.config.api_url
        if self.config.provider == LLMProvider.OPENROUTER:
            return self.OPENROUTER_BASE_URL
        if self.config.provider == LLMProvider.CLAUDE:
            return self.CLAUDE_BASE_URL
        return None  # OpenAI default

    def generate(self, conversation: list[dict[str, str]], max_output_tokens: int) -> str:
        """Call the chat completions endpoint and return the raw text."""
        try:
            response = self.client.chat.completions.create(
                model=self.config.model,
                messages=conversation,
                temperature=self.config.temperature,
                max_tokens=max_output_tokens,
            )
        except Exception as e:
            raise GenerationServiceError(f"LLM API call failed: {e}") from e

        if not response.choices:
            raise GenerationServiceError("LLM API returned no choices")
        content = response.choices[0].message.content or ""
        logger.debug(f"Received {len(content)} characters from {self.config.model}")
        return content

    def check_connection(self) -> bool:
        """Send a tiny request to confirm the endpoint, key and model work."""
        try:
            self.generate(CONNECTION_PROBE, max_output_tokens=5)
        except GenerationServiceError as e:
            logger.error(f"Connection check failed: {e}")
            return False
        return True


class OllamaClient:
    """Client for a local Ollama server."""

    def __init__(self, config: LLMConfig):
        self.config = config
        self.client = ollama.Client(host=config.host, timeout=config.timeout)

    def generate(self, conversation: list[dict[str, str]], max_output_tokens: int) -> str:
        try:
            response = self.client.chat(
                model=self.config.model,
                messages=conversation,
                options={
                    "temperature": self.config.temperature,
                    "num_predict": max_output_tokens,
                },
            )
        except Exception as e:
            raise GenerationServiceError(f"LLM API call failed: {e}") from e

        return response["message"]["content"] or ""

    def get_available_models(self) -> list[str]:
        """Get list of available models from Ollama."""
        try:
            models = self.client.list()
        except Exception as e:
            raise GenerationServiceError(f"Failed to list models: {e}") from e
        return [model["model"] for model in models.get("models", [])]

    def check_connection(self) -> bool:
        """Check that the server answers and the configured model is pulled."""
        try:
            available = self.get_available_models()
        except GenerationServiceError as e:
            logger.error(f"Failed to connect to Ollama at {self.config.host}: {e}")
            return False
        if not any(name.split(":")[0] == self.config.model.split(":")[0] for name in available):
            logger.error(f"Model '{self.config.model}' is not available on {self.config.host}")
            return False
        return True


def create_llm_client(config: LLMConfig) -> GenerationService:
    """Factory function to create the appropriate client based on provider."""
    if config.provider in (
        LLMProvider.OPENAI,
        LLMProvider.OPENROUTER,
        LLMProvider.CLAUDE,
        LLMProvider.CUSTOM,
    ):
        return OpenAICompatibleClient(config)
    elif config.provider == LLMProvider.OLLAMA:
        return OllamaClient(config)
    else:
        raise ValueError(f"Unsupported LLM provider: {config.provider}")
