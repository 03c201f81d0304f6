"""
Advisory oracle client for an OpenAI-compatible chat completions endpoint.
"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp

from .exceptions import OracleError
from .utils import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a DeFi arbitrage specialist. "
    "Analyze opportunities and provide clear advice."
)


class ChatCompletionsOracle:
    """
    Sends a prompt to ``{base_url}/chat/completions`` and returns the first
    choice's text.

    Raises OracleError on any transport, HTTP or response-shape failure; the
    caller decides what a failure means.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-3.5-turbo",
        temperature: float = 0.3,
        max_tokens: int = 150,
        timeout: float = 30.0,
        system_prompt: str = SYSTEM_PROMPT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.system_prompt = system_prompt
        self._session = session
        self._owns_session = session is None

    async def close(self):
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    def build_request(self, prompt: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/chat/completions"
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with self._get_session().post(url, json=payload, headers=headers) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise OracleError(
                        f"Oracle returned HTTP {response.status}: {text[:200]}",
                        endpoint=url,
                        status_code=response.status,
                    )
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise OracleError(f"Oracle request failed: {e}", endpoint=url) from e

    @staticmethod
    def extract_text(body: Dict[str, Any]) -> str:
        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise OracleError(f"Unexpected oracle response shape: {e}") from e
        if not isinstance(content, str) or not content.strip():
            raise OracleError("Oracle returned an empty answer")
        return content.strip()

    async def analyze(self, prompt: str) -> str:
        body = await self._post(self.build_request(prompt))
        text = self.extract_text(body)
        logger.debug(f"Oracle answered: {text}")
        return text
