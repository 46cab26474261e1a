from typing import Dict, Any, List, Optional
import httpx
import structlog

from roundtable.domain.errors import TransportError
from roundtable.domain.models.generation import GenerationOptions, GenerationResult
from roundtable.domain.ports import GenerationClient

logger = structlog.get_logger(__name__)


class OllamaGenerationClient(GenerationClient):
    """Single-attempt chat completions against an Ollama server"""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout: float = 300.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    def build_payload(
        self,
        model_id: str,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions
    ) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        payload: Dict[str, Any] = {
            "model": model_id,
            "messages": messages,
            "options": options.to_backend_options(),
            "stream": False,
        }
        if options.format:
            payload["format"] = options.format
        return payload

    async def generate(
        self,
        model_id: str,
        system_prompt: str,
        user_prompt: str,
        options: Optional[GenerationOptions] = None
    ) -> GenerationResult:
        payload = self.build_payload(model_id, system_prompt, user_prompt, options or GenerationOptions())

        try:
            response = await self._client.post("/api/chat", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"Ollama returned {e.response.status_code} for model {model_id}",
                status_code=e.response.status_code
            ) from e
        except httpx.TimeoutException as e:
            raise TransportError(f"Ollama request timed out after {self.timeout:g}s") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Ollama request failed: {e}") from e
        except ValueError as e:
            raise TransportError("Ollama returned a non-JSON body") from e

        if not isinstance(data, dict):
            raise TransportError(f"Ollama returned an unexpected body: {type(data).__name__}")
        if data.get("error"):
            raise TransportError(f"Ollama error: {data['error']}")

        message = data.get("message")
        text = message.get("content") if isinstance(message, dict) else None
        if text is None:
            # /api/generate style body
            text = data.get("response", "")

        logger.debug("Generation completed", model=model_id, chars=len(text))
        return GenerationResult(text=text)

    async def ping(self) -> bool:
        """Whether the server answers the model listing endpoint"""
        try:
            response = await self._client.get("/api/tags")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning("Ollama unreachable", base_url=self.base_url, error=str(e))
            return False

    async def list_models(self) -> List[str]:
        try:
            response = await self._client.get("/api/tags")
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to list models: {e}") from e
        return [model.get("name", "") for model in response.json().get("models", [])]

    async def close(self):
        await self._client.aclose()
