"""Input preparation and output checks shared by the embedding adapters."""

from __future__ import annotations

import structlog

from lorekeeper.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)


def prepare_texts(texts: list[str], max_chars: int, provider_name: str) -> list[str]:
    """Reject blank inputs and truncate any text longer than *max_chars*."""
    prepared: list[str] = []
    for index, text in enumerate(texts):
        if not text or not text.strip():
            raise EmbeddingError(
                message=f"Cannot embed blank text at index {index}",
                provider_name=provider_name,
            )
        if max_chars > 0 and len(text) > max_chars:
            logger.warning(
                "embedding_input_truncated",
                index=index,
                original_chars=len(text),
                truncated_chars=max_chars,
                provider=provider_name,
            )
            text = text[:max_chars]
        prepared.append(text)
    return prepared


def verify_batch(
    expected: int,
    embeddings: list[list[float]],
    provider_name: str,
    expected_dimension: int | None = None,
) -> None:
    """Fail unless there is one vector per input, each of the model's dimension.

    With no *expected_dimension* the vectors only have to agree with each
    other; the first one sets the width.
    """
    if len(embeddings) != expected:
        raise EmbeddingError(
            message=f"Provider returned {len(embeddings)} embeddings for {expected} inputs",
            provider_name=provider_name,
        )
    if not embeddings:
        return
    dimension = expected_dimension if expected_dimension is not None else len(embeddings[0])
    for index, vector in enumerate(embeddings):
        if len(vector) != dimension:
            raise EmbeddingError(
                message=(
                    f"Embedding at index {index} has dimension {len(vector)}, "
                    f"expected {dimension}"
                ),
                provider_name=provider_name,
            )
