"""
Text-completion client used by the flow compiler.

The compiler only depends on the ``TextCompletion`` protocol so tests can pass
a deterministic fake; ``AnthropicTextCompletion`` is the production client.
"""

import logging
import os
from typing import Optional, Protocol

import anthropic

from app.services.errors import ExternalCallFailure

logger = logging.getLogger(__name__)

# Model configuration
MODEL = os.getenv("FLOW_AGENT_MODEL", "claude-sonnet-4-5-20250929")
MAX_TOKENS = 4096


class TextCompletion(Protocol):
    def generate(self, prompt: str) -> str:
        """
        Return the raw completion text for a single-turn prompt.

        Implementations must raise ExternalCallFailure on any client error;
        the compiler does not catch other exception types.
        """
        ...


class AnthropicTextCompletion:
    """
    Single-turn completion over the Anthropic Messages API.

    No streaming and no retries: any client error is re-raised as
    ExternalCallFailure so the compiler can abort the current build.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = MODEL,
        max_tokens: int = MAX_TOKENS,
    ):
        if api_key is None:
            api_key = os.getenv("ANTHROPIC_API_KEY")

        self.client = anthropic.Anthropic(api_key=api_key)
        self.model = model
        self.max_tokens = max_tokens

    def generate(self, prompt: str) -> str:
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as exc:
            raise ExternalCallFailure("text completion", str(exc)) from exc

        if not response.content:
            raise ExternalCallFailure("text completion", "empty response")

        logger.debug(
            "Completion used %s input / %s output tokens",
            response.usage.input_tokens,
            response.usage.output_tokens,
        )
        return response.content[0].text
