"""
LLM clients for code synthesis.

Handles communication with Ollama, OpenRouter, and OpenAI. Every client exposes
``generate(prompt, system=None, metadata=None) -> str``; the code synthesizer
builds prompts and parses the answers.
"""

import json
import logging
import os
import re
import time
from pathlib import Path
from typing import Any
from uuid import uuid4

import ollama
from dotenv import load_dotenv
from openai import OpenAI

from codeweave.config.models import LLMConfig, LLMProvider

load_dotenv()

logger = logging.getLogger(__name__)


class LLMError(RuntimeError):
    """An LLM request failed (network, auth, timeout, empty answer)."""


def strip_markdown_code_blocks(text: str) -> str:
    """
    Strip a markdown code block wrapping the whole response.

    Handles formats like:
    - ```json\\n{...}\\n```
    - ```\\ncode\\n```

    Args:
        text: Raw LLM response that may contain markdown formatting

    Returns:
        The response without the wrapper
    """
    text = text.strip()

    pattern = r"^```(?:\w+)?\s*\n?(.*?)\n?```$"
    match = re.match(pattern, text, re.DOTALL)
    if match:
        return match.group(1).strip()

    return text


class LLMConversation:
    """A single request/response exchange with the LLM."""

    def __init__(self, conversation_id: str | None = None):
        self.id = conversation_id or str(uuid4())
        self.messages: list[dict[str, str]] = []
        self.metadata: dict[str, Any] = {}
        self.created_at = time.time()

    def add_message(self, role: str, content: str):
        self.messages.append({"role": role, "content": content})

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "messages": self.messages,
            "metadata": self.metadata,
            "created_at": self.created_at,
            "updated_at": time.time(),
        }

    def save(self, output_dir: Path):
        """Save conversation to a JSON file."""
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{self.id}.json"

        with open(output_path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)


def _build_conversation(
    prompt: str, system: str | None, metadata: dict[str, Any] | None
) -> LLMConversation:
    conversation = LLMConversation()
    conversation.metadata = dict(metadata or {})
    if system:
        conversation.add_message("system", system)
    conversation.add_message("user", prompt)
    return conversation


class OllamaClient:
    """Client for a local Ollama server."""

    def __init__(self, config: LLMConfig, conversation_log_dir: Path | None = None):
        self.config = config
        self.conversation_log_dir = conversation_log_dir
        self.client = ollama.Client(host=config.host, timeout=config.timeout)

        try:
            self.client.list()
        except Exception as e:
            raise ConnectionError(f"Failed to connect to Ollama at {config.host}: {e}") from e

    def generate(
        self,
        prompt: str,
        system: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Send one prompt and return the answer text."""
        conversation = _build_conversation(prompt, system, metadata)
        response = self._call_llm(list(conversation.messages))
        conversation.add_message("assistant", response)

        if self.conversation_log_dir:
            conversation.save(self.conversation_log_dir)
        return response

    def _call_llm(self, messages: list[dict[str, str]]) -> str:
        """
        Call the Ollama chat API.

        Args:
            messages: List of messages in OpenAI format

        Returns:
            The assistant's response content (with markdown stripped)
        """
        try:
            response = self.client.chat(
                model=self.config.model,
                messages=messages,
                options={
                    "temperature": self.config.temperature,
                    "num_predict": self.config.max_tokens,
                },
            )
            content = response["message"]["content"]
        except Exception as e:
            raise LLMError(f"LLM API call failed: {e}") from e

        if not content:
            raise LLMError("LLM returned an empty response")
        return strip_markdown_code_blocks(content)

    def get_available_models(self) -> list[str]:
        try:
            models = self.client.list()
        except Exception as e:
            raise LLMError(f"Failed to list models: {e}") from e
        return [model["model"] for model in models.get("models", [])]


class OpenRouterClient:
    """Client for OpenAI-compatible APIs (OpenRouter, OpenAI, etc.)."""

    OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

    def __init__(
        self,
        config: LLMConfig,
        conversation_log_dir: Path | None = None,
        base_url: str | None = "openrouter",
    ):
        self.config = config
        self.conversation_log_dir = conversation_log_dir

        if not config.api_key:
            config.api_key = os.environ.get("OPENROUTER_API_KEY") or os.environ.get("OPENAI_API_KEY")
            if not config.api_key:
                raise ValueError(
                    "API key required (set llm.api_key in config, OPENROUTER_API_KEY or OPENAI_API_KEY)"
                )

        # base_url="openrouter" -> OpenRouter URL, None -> OpenAI default, else custom URL
        if base_url == "openrouter":
            effective_url = self.OPENROUTER_BASE_URL
        else:
            effective_url = base_url

        client_kwargs: dict[str, Any] = {"api_key": config.api_key, "timeout": config.timeout}
        if effective_url is not None:
            client_kwargs["base_url"] = effective_url
        self.client = OpenAI(**client_kwargs)

    def generate(
        self,
        prompt: str,
        system: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Send one prompt and return the answer text."""
        conversation = _build_conversation(prompt, system, metadata)
        response = self._call_llm(list(conversation.messages))
        conversation.add_message("assistant", response)

        if self.conversation_log_dir:
            conversation.save(self.conversation_log_dir)
        return response

    def _call_llm(self, messages: list[dict[str, str]]) -> str:
        """Call the OpenAI-compatible API."""
        try:
            response = self.client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
            content = response.choices[0].message.content
        except Exception as e:
            raise LLMError(f"LLM API call failed: {e}") from e

        if not content:
            raise LLMError("LLM returned an empty response")
        return strip_markdown_code_blocks(content)


def create_llm_client(config: LLMConfig, conversation_log_dir: Path | None = None):
    """Factory function to create the appropriate LLM client based on provider."""
    log_dir = conversation_log_dir or config.conversation_log_dir
    if config.provider == LLMProvider.OPENROUTER:
        return OpenRouterClient(config, log_dir, base_url="openrouter")
    elif config.provider == LLMProvider.OPENAI:
        return OpenRouterClient(config, log_dir, base_url=None)
    elif config.provider == LLMProvider.OLLAMA:
        return OllamaClient(config, log_dir)
    else:
        raise ValueError(f"Unsupported LLM provider: {config.provider}")
