"""
Azure AI Foundry service module.

This module handles all interactions with Azure AI Foundry (OpenAI-compatible
chat completions). Both interview prompt flows (question generation and
scoring) go through AzureFoundryService.complete_json(), which asks the model
for a JSON object and parses it.
"""

import json
import re
from typing import Any, Dict, List, Optional

from openai import AzureOpenAI

import config

_JSON_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Parse the first JSON object out of a model reply.

    Accepts a bare object, a ```json fenced block, or an object embedded in prose.

    Raises:
        ValueError: If no JSON object can be parsed
    """
    if not text or not text.strip():
        raise ValueError("Empty model response")
    candidates = [text.strip()]
    candidates.extend(m.strip() for m in _JSON_FENCE.findall(text))
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    raise ValueError("Model response is not a JSON object: %s" % text[:200])


class AzureFoundryService:
    """
    Service class for interacting with Azure AI Foundry.

    The underlying client is created on first request so the app can start
    (and tests can run) without Foundry credentials.
    """

    def __init__(self, timeout: Optional[float] = None, max_retries: Optional[int] = None):
        self.endpoint = config.AZURE_FOUNDRY_ENDPOINT
        self.deployment_name = config.FOUNDRY_DEPLOYMENT_NAME
        self.api_key = config.AZURE_FOUNDRY_KEY
        self.timeout = config.LLM_TIMEOUT_SEC if timeout is None else float(timeout)
        self.max_retries = config.LLM_MAX_RETRIES if max_retries is None else int(max_retries)
        self._client: Optional[AzureOpenAI] = None

    @property
    def client(self) -> AzureOpenAI:
        """
        Return the AzureOpenAI client, creating it on first use.

        Raises:
            ValueError: If the Foundry endpoint or key is not configured
        """
        if self._client is None:
            if not (self.endpoint and self.api_key):
                raise ValueError("Azure AI Foundry is not configured (set AZURE_FOUNDRY_ENDPOINT and AZURE_FOUNDRY_KEY)")
            self._client = AzureOpenAI(
                azure_endpoint=self.endpoint,
                api_key=self.api_key,
                api_version=config.AZURE_FOUNDRY_API_VERSION,
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
        return self._client

    def chat_completion(
        self,
        messages: List[Dict[str, str]],
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str:
        """
        Get a non-streaming chat completion from Azure AI Foundry.

        Args:
            messages: List of message dictionaries with 'role' and 'content'
            system_prompt: Optional system prompt to prepend to messages
            max_tokens: Optional max response length
            temperature: Optional sampling temperature (0-1)
            json_mode: Ask the model for a JSON object response

        Returns:
            str: The assistant's response content

        Raises:
            ValueError: If Foundry is not configured
            openai.OpenAIError: If the API call fails or times out
        """
        messages = list(messages)
        if system_prompt and not any(msg.get("role") == "system" for msg in messages):
            messages.insert(0, {"role": "system", "content": system_prompt})
        kwargs = {"model": self.deployment_name, "messages": messages}
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if temperature is not None:
            kwargs["temperature"] = float(temperature)
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = self.client.chat.completions.create(**kwargs)
        return response.choices[0].message.content or ""

    def complete_json(
        self,
        system_prompt: str,
        user_content: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Run one JSON-mode completion and parse the reply.

        Raises:
            ValueError: If Foundry is not configured or the reply is not a JSON object
            openai.OpenAIError: If the API call fails or times out
        """
        text = self.chat_completion(
            [{"role": "user", "content": user_content}],
            system_prompt=system_prompt,
            max_tokens=max_tokens,
            temperature=temperature,
            json_mode=True,
        )
        return extract_json_object(text)


# Lazy singleton: initialized on first use to avoid loading Azure SDK at import time
_foundry_service: Optional[AzureFoundryService] = None


def get_foundry_service() -> AzureFoundryService:
    """Return the Azure AI Foundry service instance, creating it on first call (lazy init)."""
    global _foundry_service
    if _foundry_service is None:
        _foundry_service = AzureFoundryService()
    return _foundry_service
