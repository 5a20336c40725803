"""
Prediction LLM Client
Thin wrapper around the OpenAI chat completions API with fixed sampling
parameters. Fail-fast: any API error surfaces as UpstreamFailure, no retries.
"""

import os
import time
import logging
from typing import Dict, Optional

from openai import OpenAI, OpenAIError

from backend.config import AI_CONFIG
from backend.core.errors import UpstreamFailure

logger = logging.getLogger(__name__)


class PredictionLLMClient:
    """
    Responsibilities:
    - Send one rendered prompt as a single user message
    - Apply the fixed model, temperature and token budget
    - Return the plain-text reply
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = AI_CONFIG["model"],
        timeout_seconds: int = AI_CONFIG["timeout_seconds"],
        max_tokens: int = AI_CONFIG["max_tokens"],
        temperature: float = AI_CONFIG["temperature"],
        client: Optional[OpenAI] = None,
    ):
        """
        Args:
            api_key: OpenAI API key (defaults to env var OPENAI_API_KEY)
            model: Model identifier, recorded on every prediction as model_version
            timeout_seconds: Request timeout
            max_tokens: Maximum tokens for response
            temperature: Sampling temperature
            client: Pre-built OpenAI client (tests inject a fake)
        """
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_tokens = max_tokens
        self.temperature = temperature

        if client is not None:
            self.client = client
        elif self.api_key:
            self.client = OpenAI(api_key=self.api_key, timeout=timeout_seconds)
        else:
            self.client = None

        self.total_calls = 0
        self.failed_calls = 0

    def complete(self, prompt: str) -> str:
        """
        Run one completion.

        Raises:
            UpstreamFailure: missing key, API error or empty reply
        """
        if self.client is None:
            raise UpstreamFailure("llm", "OPENAI_API_KEY is not set in environment")

        self.total_calls += 1
        start_time = time.time()

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except OpenAIError as e:
            self.failed_calls += 1
            raise UpstreamFailure("llm", f"OpenAI API error: {e}") from e

        response_time_ms = int((time.time() - start_time) * 1000)
        text = "\n".join(
            choice.message.content
            for choice in response.choices
            if choice.message and choice.message.content
        )

        if not text.strip():
            self.failed_calls += 1
            raise UpstreamFailure("llm", "Empty response from LLM")

        tokens = response.usage.total_tokens if getattr(response, "usage", None) else None
        logger.info("LLM completion in %dms (model=%s, tokens=%s)", response_time_ms, self.model, tokens)
        return text

    def get_stats(self) -> Dict[str, int]:
        return {
            "total_calls": self.total_calls,
            "failed_calls": self.failed_calls,
            "success_count": self.total_calls - self.failed_calls,
        }
