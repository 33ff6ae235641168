import asyncio
import logging

import httpx

from ideaforge.config import settings
from ideaforge.errors import GenerationError, RateLimitedError

logger = logging.getLogger(__name__)


class LLMService:
    """Thin client for an Ollama-compatible chat endpoint.

    Performs exactly one HTTP call per ``chat``; retrying is the caller's
    business (see GenerationRetryPolicy).
    """

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.ollama_url).rstrip("/")
        self.model = model or settings.text_model
        self.timeout = timeout or settings.llm_timeout_seconds
        self._transport = transport

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout or self.timeout, transport=self._transport)

    async def chat(
        self,
        prompt: str,
        system: str | None = None,
        temperature: float = 0.8,
        force_json: bool = True,
        max_tokens: int | None = None,
    ) -> str:
        """
        Send a single chat completion request.

        Args:
            prompt: The user prompt
            system: Optional system prompt
            temperature: Sampling temperature
            force_json: Ask the server to constrain output to JSON
            max_tokens: Optional generation cap

        Returns:
            The model's response text (never empty)

        Raises:
            RateLimitedError: The server answered 429
            GenerationError: Any other transport or server failure, or an empty answer
        """
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        options: dict = {"temperature": temperature}
        if max_tokens:
            options["num_predict"] = max_tokens

        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": options,
        }
        if force_json:
            payload["format"] = "json"

        logger.info(f"LLM: Sending request to {self.model} ({len(prompt)} chars)")
        logger.debug(f"LLM: Prompt preview: {prompt[:200]}...")

        async with self._client() as client:
            try:
                response = await client.post(f"{self.base_url}/api/chat", json=payload)
            except httpx.ConnectError as e:
                logger.error(f"LLM: Cannot connect to {self.base_url}: {e}")
                raise GenerationError(f"Cannot connect to model server at {self.base_url}")
            except httpx.TimeoutException as e:
                logger.error(f"LLM: Request timed out after {self.timeout}s: {e}")
                raise GenerationError(f"Model request timed out after {self.timeout:.0f}s")
            except asyncio.CancelledError:
                raise
            except httpx.HTTPError as e:
                logger.error(f"LLM: Transport error: {type(e).__name__}: {e}")
                raise GenerationError(f"Model request failed: {e}")

        if response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            logger.warning(f"LLM: Rate limited by {self.base_url}")
            raise RateLimitedError(
                "Model server rate limit exceeded",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )

        if response.status_code != 200:
            error_text = response.text
            logger.error(f"LLM HTTP {response.status_code}: {error_text[:300]}")
            try:
                error_msg = response.json().get("error", error_text)
            except ValueError:
                error_msg = error_text
            raise GenerationError(
                f"Model server error ({response.status_code}): {error_msg}",
                {"status_code": response.status_code},
            )

        content = response.json().get("message", {}).get("content", "")
        if not content or not content.strip():
            raise GenerationError("Model returned an empty response")

        logger.info(f"LLM: Response received ({len(content)} chars)")
        return content

    async def health_check(self) -> bool:
        try:
            async with self._client(timeout=10.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"LLM health check failed: {e}")
            return False

    async def check_model(self) -> dict:
        """Report whether the configured text model is installed."""
        try:
            async with self._client(timeout=10.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                if response.status_code != 200:
                    return {"available": False, "error": f"HTTP {response.status_code}"}
                models = [m.get("name", "") for m in response.json().get("models", [])]
                return {
                    "available": True,
                    "text_model": self.model,
                    "text_model_found": any(self.model in m for m in models),
                    "available_models": models,
                }
        except httpx.HTTPError as e:
            return {"available": False, "error": str(e)}
