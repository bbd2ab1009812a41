"""Completion provider backed by an OpenAI-compatible gateway."""
from typing import Dict, Optional, Sequence
import logging

from openai import APIError, OpenAI

from app.config import Settings
from app.core.errors import ConfigError, ProviderError

logger = logging.getLogger(__name__)

EMPTY_COMPLETION_TEXT = "I received your message but couldn't generate a proper response."


class CompletionProvider:
    """
    Single-shot chat completion.

    Model, temperature and max tokens are static configuration. The SDK's
    built-in retries are disabled: every request is attempted exactly once.
    """

    def __init__(self, settings: Settings, client: Optional[OpenAI] = None):
        self.settings = settings
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not self.settings.OPENROUTER_API_KEY:
                raise ConfigError("OpenRouter API key not configured")
            self._client = OpenAI(
                api_key=self.settings.OPENROUTER_API_KEY,
                base_url=self.settings.COMPLETION_BASE_URL,
                timeout=self.settings.COMPLETION_TIMEOUT,
                max_retries=0,
            )
        return self._client

    def ensure_configured(self) -> None:
        """Raise ConfigError now rather than at first completion."""
        self.client

    def complete(
        self,
        system_prompt: str,
        prior_messages: Sequence[Dict[str, str]],
        new_user_message: str,
    ) -> str:
        """
        Ask the model for the next assistant turn.

        Args:
            system_prompt: System instruction prepended to the conversation
            prior_messages: Earlier turns as {"role", "content"} dicts, oldest first
            new_user_message: The message being answered

        Returns:
            Assistant text

        Raises:
            ConfigError: If no API key is configured
            ProviderError: If the gateway call fails
        """
        messages = [
            {"role": "system", "content": system_prompt},
            *({"role": m["role"], "content": m["content"]} for m in prior_messages),
            {"role": "user", "content": new_user_message},
        ]

        try:
            response = self.client.chat.completions.create(
                model=self.settings.COMPLETION_MODEL,
                messages=messages,
                temperature=self.settings.COMPLETION_TEMPERATURE,
                max_tokens=self.settings.COMPLETION_MAX_TOKENS,
                extra_headers={
                    "HTTP-Referer": self.settings.APP_URL,
                    "X-Title": self.settings.APP_TITLE,
                },
            )
        except APIError as e:
            logger.error(f"Completion request failed: model={self.settings.COMPLETION_MODEL}, error={str(e)}")
            raise ProviderError("Failed to get response from AI", str(e)) from e

        choices = response.choices or []
        content = choices[0].message.content if choices else None
        return content or EMPTY_COMPLETION_TEXT
