"""Answer generation with an Ollama chat model."""

from typing import Optional

import httpx
import ollama

from ragengine.exceptions import GenerationError
from ragengine.generation.base import Generator
from ragengine.models import ContextBundle
from ragengine.utils.logger import get_logger

logger = get_logger("generation")

DEFAULT_SYSTEM_PROMPT = (
    "You answer questions using only the context provided by the user. "
    "Answer in full sentences. If the context does not contain the answer, "
    "say that you don't know instead of making one up."
)


class OllamaGenerator(Generator):
    """Generates answers with ``ollama.AsyncClient.chat``."""

    def __init__(
        self,
        model: str,
        host: str = "http://localhost:11434",
        temperature: float = 0.3,
        max_tokens: int = 500,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        timeout: Optional[float] = 120.0,
        client: Optional[ollama.AsyncClient] = None
    ):
        """
        Initialize the generator.

        Args:
            model: Ollama chat model name
            host: Ollama server URL
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate (num_predict)
            system_prompt: System prompt for every request
            timeout: Request timeout in seconds
            client: Pre-built client, mainly for tests
        """
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt
        self.client = client or ollama.AsyncClient(host=host, timeout=timeout)

    async def generate(self, query: str, context: ContextBundle) -> str:
        user_prompt = self._build_user_prompt(query, context.context)

        logger.debug(f"Calling Ollama with model {self.model}")

        try:
            response = await self.client.chat(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": user_prompt}
                ],
                options={
                    "temperature": self.temperature,
                    "num_predict": self.max_tokens,
                }
            )
        except (ollama.ResponseError, ollama.RequestError, httpx.HTTPError, ConnectionError) as e:
            logger.error(f"LLM generation failed: {e}")
            raise GenerationError(f"Ollama chat request failed: {e}") from e

        response_text = response["message"]["content"]
        logger.debug(f"LLM generated {len(response_text)} characters")

        return response_text

    def _build_user_prompt(self, query: str, context: str) -> str:
        if context:
            return f"""CONTEXT:
{context}

QUESTION:
{query}

ANSWER:"""
        return f"""No context was found in the knowledge base for this question.

QUESTION:
{query}

ANSWER (say that the knowledge base has no information on this):"""
