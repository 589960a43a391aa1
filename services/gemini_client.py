# services/gemini_client.py
import asyncio
import logging
from typing import Optional, Dict

import aiohttp

from analysis.errors import ReasoningServiceFailure
from constants import GEMINI_API_BASE_URL, GEMINI_DEFAULT_MODEL

logger = logging.getLogger(__name__)


async def api_post(url: str, session: aiohttp.ClientSession, json_data: Dict, headers: Optional[Dict] = None) -> Optional[Dict]:
    """Makes a generic async POST request."""
    try:
        async with session.post(url, json=json_data, headers=headers) as response:
            response.raise_for_status()
            return await response.json()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.warning("API POST request failed: %s", e)
        return None


class GeminiClient:
    """Thin wrapper over the Gemini generateContent REST endpoint.

    Returns the raw text of the first candidate. Interpreting that text is the
    caller's job; every transport or envelope problem raises
    `ReasoningServiceFailure`.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_key: str,
        model: str = GEMINI_DEFAULT_MODEL,
        temperature: float = 0.1,
        max_output_tokens: int = 1024,
    ):
        self.session = session
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.base_url = f"{GEMINI_API_BASE_URL}/{model}:generateContent"
        self.headers = {'Content-Type': 'application/json', 'x-goog-api-key': self.api_key}

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        if not self.api_key:
            raise ReasoningServiceFailure("Gemini API key not configured")

        request_body = self._build_request_body(prompt, system_prompt)
        response_json = await api_post(self.base_url, self.session, json_data=request_body, headers=self.headers)

        if response_json is None:
            raise ReasoningServiceFailure("Gemini API response was empty")

        try:
            candidate = response_json['candidates'][0]['content']['parts'][0]['text'].strip()
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ReasoningServiceFailure("Unexpected Gemini response envelope", cause=e) from e

        if not candidate:
            raise ReasoningServiceFailure("Gemini returned an empty candidate")
        return self._strip_code_fences(candidate)

    def _build_request_body(self, prompt: str, system_prompt: Optional[str]) -> Dict:
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
                "responseMimeType": "application/json",
            },
        }
        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        return body

    @staticmethod
    def _strip_code_fences(text: str) -> str:
        if text.startswith("```"):
            lines = text.splitlines()
            if len(lines) >= 3 and lines[0].startswith("```") and lines[-1].startswith("```"):
                inner = "\n".join(lines[1:-1]).strip()
                if inner.startswith("json"):
                    inner = inner[4:].strip()
                return inner
        return text
