"""
Embedding client — turns task text into a fixed-length vector via OpenAI.

Only used for similarity lookup. The retry wrapper is separate from the
client so any embedder (including test fakes) gets the same bounded retry.
"""

import logging
import time
from typing import Callable, List, Optional, Protocol

from openai import APIError, OpenAI

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "text-embedding-3-small"


class EmbeddingError(Exception):
    """Raised when no embedding could be produced after all retries."""


class Embedder(Protocol):
    """The embedding capability."""

    model: str

    def generate(self, text: str) -> List[float]:
        ...


def generate_with_retry(
    embedder: Embedder,
    text: str,
    attempts: int = 3,
    backoff_seconds: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> List[float]:
    """
    Call embedder.generate up to `attempts` times.
    Waits backoff, 2*backoff, 4*backoff, ... between attempts.
    """
    last_error: Optional[Exception] = None
    for attempt in range(attempts):
        if attempt > 0:
            delay = backoff_seconds * (2 ** (attempt - 1))
            logger.debug("Retrying embedding in %.1fs (attempt %d/%d)", delay, attempt + 1, attempts)
            sleep(delay)
        try:
            vector = embedder.generate(text)
        except Exception as e:
            last_error = e
            logger.warning("Embedding attempt %d/%d failed: %s", attempt + 1, attempts, e)
            continue
        if not vector:
            last_error = EmbeddingError("empty embedding returned")
            continue
        return vector

    raise EmbeddingError(f"embedding failed after {attempts} attempts: {last_error}") from last_error


class OpenAIEmbeddingClient:
    """Embedding capability backed by the OpenAI embeddings endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        dimensions: Optional[int] = None,
        timeout: float = 30.0,
        client: Optional[OpenAI] = None,
    ):
        self.model = model
        self.dimensions = dimensions
        self.client = client or OpenAI(api_key=api_key, timeout=timeout)

    def generate(self, text: str) -> List[float]:
        kwargs = {"model": self.model, "input": text}
        if self.dimensions:
            kwargs["dimensions"] = self.dimensions
        try:
            response = self.client.embeddings.create(**kwargs)
        except APIError as e:
            raise EmbeddingError(str(e)) from e

        if not response.data:
            raise EmbeddingError("no embedding data returned")
        return list(response.data[0].embedding)
