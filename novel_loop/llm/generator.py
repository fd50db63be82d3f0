"""Text generator contract and the retrying Gemini/Qwen backends."""

import time
from dataclasses import dataclass
from typing import Callable, Protocol

from loguru import logger

from ..config import LLMConfig, RetryConfig
from ..exceptions import GenerationError


class TextGenerator(Protocol):
    """Turn a prompt into text.

    Implementations retry transient failures themselves and raise
    GenerationError once retries are exhausted. Calls carry no session state.
    """

    def generate(self, system: str, prompt: str, temperature: float = 0.7) -> str:
        ...


@dataclass
class GenerationLog:
    provider: str = ""
    prompt_preview: str = ""
    response_preview: str = ""
    elapsed_seconds: float = 0.0
    attempts: int = 0


RETRYABLE_ERRORS = ("rate_limit", "server_error", "timeout", "unknown")


def classify_error(error: Exception) -> str:
    message = str(error).lower()
    if "quota" in message or "429" in message or "rate limit" in message or "rate_limit" in message:
        return "rate_limit"
    if any(code in message for code in ("500", "502", "503")) or "server" in message:
        return "server_error"
    if "timeout" in message or "timed out" in message or "aborted" in message:
        return "timeout"
    if "401" in message or "403" in message or "unauthorized" in message or "invalid api key" in message:
        return "auth_error"
    if "400" in message or "invalid" in message:
        return "invalid_request"
    return "unknown"


def retry_delay(error_type: str, attempt: int, config: RetryConfig) -> float:
    """Seconds to wait before retry number ``attempt + 1``.

    Rate limits back off exponentially; everything else backs off linearly.
    """
    if error_type == "rate_limit":
        return config.rate_limit_base_delay * (2 ** attempt)
    if error_type == "server_error":
        return config.server_error_base_delay * (attempt + 1)
    return config.other_error_base_delay * (attempt + 1)


class LLMTextGenerator:
    """TextGenerator backed by Gemini (google-genai) or Qwen (OpenAI-compatible)."""

    def __init__(
        self,
        llm_config: LLMConfig,
        retry_config: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.llm_config = llm_config
        self.retry_config = retry_config or RetryConfig()
        self._sleep = sleep
        self.logs: list[GenerationLog] = []

    def generate(self, system: str, prompt: str, temperature: float = 0.7) -> str:
        max_retries = self.retry_config.max_retries
        last_error: Exception | None = None
        last_type = "unknown"
        start = time.time()

        for attempt in range(max_retries):
            try:
                result = self._call(system, prompt, temperature)
                self._log(prompt, result, time.time() - start, attempt + 1)
                return result
            except Exception as e:
                last_error = e
                last_type = classify_error(e)
                logger.warning(
                    f"Generation attempt {attempt + 1}/{max_retries} failed ({last_type}): {e}"
                )
                if last_type not in RETRYABLE_ERRORS:
                    raise GenerationError(str(e), error_type=last_type) from e
                if attempt < max_retries - 1:
                    self._sleep(retry_delay(last_type, attempt, self.retry_config))

        raise GenerationError(
            f"Failed after {max_retries} retries: {last_error}", error_type=last_type
        ) from last_error

    def _call(self, system: str, prompt: str, temperature: float) -> str:
        if self.llm_config.provider == "qwen":
            result = self.call_qwen(system, prompt, temperature)
        else:
            result = self.call_gemini(system, prompt, temperature)
        if not result:
            raise RuntimeError("Empty response from model")
        return result

    def call_gemini(self, system: str, prompt: str, temperature: float) -> str:
        """Call Gemini API via google-genai SDK."""
        from google import genai
        from google.genai import types

        client = genai.Client(api_key=self.llm_config.api_key)
        response = client.models.generate_content(
            model=self.llm_config.model,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=system,
                temperature=temperature,
                max_output_tokens=self.llm_config.max_output_tokens,
            ),
        )
        return response.text

    def call_qwen(self, system: str, prompt: str, temperature: float) -> str:
        """Call Qwen API via OpenAI-compatible DashScope endpoint."""
        from openai import OpenAI

        client = OpenAI(
            api_key=self.llm_config.api_key,
            base_url=self.llm_config.base_url
            or "https://dashscope-intl.aliyuncs.com/compatible-mode/v1",
        )
        response = client.chat.completions.create(
            model=self.llm_config.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            max_tokens=self.llm_config.max_output_tokens,
        )
        return response.choices[0].message.content

    def _log(self, prompt: str, response: str, elapsed: float, attempts: int) -> None:
        logger.debug(f"{self.llm_config.provider} responded in {elapsed:.2f}s after {attempts} attempt(s)")
        self.logs.append(
            GenerationLog(
                provider=self.llm_config.provider,
                prompt_preview=prompt[:200],
                response_preview=response[:200] if response else "",
                elapsed_seconds=round(elapsed, 2),
                attempts=attempts,
            )
        )
