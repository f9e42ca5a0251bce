"""
LLM client wrapper with retries, timeouts, and provider abstraction.
"""
import logging
import time
from typing import Optional, Dict, Any

import requests

logger = logging.getLogger(__name__)


class LLMClientError(Exception):
    """The provider could not be reached or answered with an error."""


class LLMTimeoutError(LLMClientError):
    """The provider did not answer within the configured timeout."""


class LLMClient:
    """Unified client for calling LLM providers (OpenAI, Anthropic, local Ollama)"""

    DEFAULT_MODELS = {
        "openai": "gpt-4o-mini",
        "anthropic": "claude-3-haiku-20240307",
        "ollama": "llama3.1:8b",
    }

    def __init__(self, provider: str = "openai", model: Optional[str] = None, timeout: int = 60,
                 max_retries: int = 1, api_key: Optional[str] = None,
                 base_url: Optional[str] = None):
        self.provider = (provider or "none").lower()
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.model = model or self.DEFAULT_MODELS.get(self.provider, "")
        self.api_key = api_key
        self.base_url = (base_url or "http://localhost:11434").rstrip("/")

    @classmethod
    def from_config(cls, llm_config: Dict[str, Any]) -> "LLMClient":
        """Build a client from ExtractionConfig.get_llm_config()."""
        provider = (llm_config.get("provider") or "none").lower()
        settings = llm_config.get(provider, {}) or {}
        return cls(
            provider=provider,
            model=settings.get("model"),
            timeout=llm_config.get("timeout", 60),
            max_retries=llm_config.get("max_retries", 1),
            api_key=settings.get("api_key"),
            base_url=settings.get("base_url"),
        )

    def is_configured(self) -> bool:
        """True when the provider has what it needs to be called."""
        if self.provider in ("openai", "anthropic"):
            return bool(self.api_key)
        if self.provider == "ollama":
            return bool(self.base_url)
        return False

    def call(self, prompt: str, system_prompt: str = "", max_tokens: int = 1000,
             json_mode: bool = False) -> Dict[str, Any]:
        """
        Call LLM with retry logic.
        Returns: {"text": str, "tokens": int, "cost": float}
        """
        last_error: Optional[LLMClientError] = None
        for attempt in range(self.max_retries):
            try:
                if self.provider == "openai":
                    return self._call_openai(prompt, system_prompt, max_tokens, json_mode)
                elif self.provider == "anthropic":
                    return self._call_anthropic(prompt, system_prompt, max_tokens)
                elif self.provider == "ollama":
                    return self._call_ollama(prompt, system_prompt, max_tokens, json_mode)
                else:
                    raise LLMClientError(f"Unknown provider: {self.provider}")
            except requests.exceptions.Timeout as e:
                last_error = LLMTimeoutError(f"{self.provider} call timed out after {self.timeout}s: {e}")
            except requests.exceptions.RequestException as e:
                last_error = LLMClientError(f"{self.provider} call failed: {e}")
            except (KeyError, IndexError, ValueError) as e:
                last_error = LLMClientError(f"Unexpected {self.provider} response: {e}")

            if attempt < self.max_retries - 1:
                logger.warning("LLM call attempt %d failed: %s", attempt + 1, last_error)
                time.sleep(2 ** attempt)

        raise last_error or LLMClientError("LLM call failed")

    def _call_openai(self, prompt: str, system_prompt: str, max_tokens: int, json_mode: bool) -> Dict[str, Any]:
        """Call OpenAI API."""
        if not self.api_key:
            raise LLMClientError("OpenAI API key not set")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": 0.1
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        resp = requests.post(
            "https://api.openai.com/v1/chat/completions",
            headers=headers,
            json=payload,
            timeout=self.timeout
        )
        resp.raise_for_status()
        data = resp.json()

        text = data["choices"][0]["message"]["content"]
        tokens = data.get("usage", {}).get("total_tokens", 0)

        return {"text": text, "tokens": tokens, "cost": 0.0}

    def _call_anthropic(self, prompt: str, system_prompt: str, max_tokens: int) -> Dict[str, Any]:
        """Call Anthropic API."""
        if not self.api_key:
            raise LLMClientError("Anthropic API key not set")

        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
            "Content-Type": "application/json"
        }

        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0.1
        }

        if system_prompt:
            payload["system"] = system_prompt

        resp = requests.post(
            "https://api.anthropic.com/v1/messages",
            headers=headers,
            json=payload,
            timeout=self.timeout
        )
        resp.raise_for_status()
        data = resp.json()

        text = data["content"][0]["text"]
        usage = data.get("usage", {})
        tokens = usage.get("input_tokens", 0) + usage.get("output_tokens", 0)

        return {"text": text, "tokens": tokens, "cost": 0.0}

    def _call_ollama(self, prompt: str, system_prompt: str, max_tokens: int, json_mode: bool) -> Dict[str, Any]:
        """Call local Ollama instance."""
        full_prompt = f"{system_prompt}\n\n{prompt}" if system_prompt else prompt

        payload = {
            "model": self.model,
            "prompt": full_prompt,
            "stream": False,
            "options": {
                "num_predict": max_tokens,
                "temperature": 0.1
            }
        }
        if json_mode:
            payload["format"] = "json"

        resp = requests.post(
            f"{self.base_url}/api/generate",
            json=payload,
            timeout=self.timeout
        )
        resp.raise_for_status()
        data = resp.json()

        text = data.get("response", "")
        tokens = data.get("prompt_eval_count", 0) + data.get("eval_count", 0)

        return {"text": text, "tokens": tokens, "cost": 0.0}
