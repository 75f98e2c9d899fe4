"""OpenAI adapters for embeddings and chat completions.

Both adapters wrap the async OpenAI SDK client and translate SDK failures
into CollaboratorUnavailableError so callers handle one error type.
"""

from openai import AsyncOpenAI, OpenAIError

from maturion_assessment.errors import CollaboratorUnavailableError
from maturion_assessment.observability import get_logger

logger = get_logger(__name__)


def build_openai_client(api_key: str, timeout_seconds: float = 60.0) -> AsyncOpenAI:
    """Create the shared async OpenAI client.

    Args:
        api_key: OpenAI API key.
        timeout_seconds: Request timeout.

    Returns:
        Configured AsyncOpenAI client.

    Raises:
        CollaboratorUnavailableError: If no API key is configured.
    """
    if not api_key:
        raise CollaboratorUnavailableError(
            collaborator="openai",
            message="OpenAI API key is not configured (MATURION_OPENAI_API_KEY).",
        )
    return AsyncOpenAI(api_key=api_key, timeout=timeout_seconds)


class OpenAIEmbeddingClient:
    """Embedding collaborator backed by the OpenAI embeddings API."""

    def __init__(self, client: AsyncOpenAI, model: str = "text-embedding-3-small") -> None:
        """Initialise the adapter.

        Args:
            client: Async OpenAI client.
            model: Embedding model name.
        """
        self._client = client
        self._model = model

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for a piece of text.

        Raises:
            CollaboratorUnavailableError: If the embeddings API call fails.
        """
        try:
            response = await self._client.embeddings.create(model=self._model, input=text)
        except OpenAIError as exc:
            logger.warning("Embedding request failed", model=self._model, error=str(exc))
            raise CollaboratorUnavailableError(
                collaborator="embedding",
                message=f"Embedding service unavailable: {exc}",
            ) from exc
        return list(response.data[0].embedding)


class OpenAIChatClient:
    """Language-model collaborator backed by OpenAI chat completions."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "gpt-4o-mini",
        temperature: float = 0.3,
        max_tokens: int = 2000,
    ) -> None:
        """Initialise the adapter.

        Args:
            client: Async OpenAI client.
            model: Chat model name.
            temperature: Sampling temperature.
            max_tokens: Maximum tokens in the reply.
        """
        self._client = client
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Return the model's reply to the composed prompt.

        Raises:
            CollaboratorUnavailableError: If the chat completion call fails.
        """
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except OpenAIError as exc:
            logger.warning("Chat completion request failed", model=self._model, error=str(exc))
            raise CollaboratorUnavailableError(
                collaborator="language_model",
                message=f"Language model unavailable: {exc}",
            ) from exc

        usage = response.usage
        logger.debug(
            "Chat completion received",
            model=self._model,
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
        )
        return response.choices[0].message.content or ""
