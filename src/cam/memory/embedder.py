"""Embedding generation using sentence-transformers with ONNX backend."""

from __future__ import annotations

import logging
import threading
from typing import Protocol

from cam.errors import EmbeddingError

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    def embed(self, text: str) -> list[float]: ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


# Lazy-loaded models keyed by model name.
_models: dict[str, object] = {}
_models_lock = threading.Lock()


def _get_model(model_name: str):
    """Lazy-load the sentence-transformers model with ONNX backend."""
    with _models_lock:
        model = _models.get(model_name)
        if model is None:
            from sentence_transformers import SentenceTransformer

            logger.info(f"Loading embedding model: {model_name}")
            model = SentenceTransformer(model_name, backend="onnx")
            _models[model_name] = model
            logger.info("Embedding model loaded successfully")
        return model


class SentenceTransformerEmbedder:
    """Normalized sentence embeddings; the model loads on first use."""

    def __init__(self, model_name: str = "BAAI/bge-base-en-v1.5") -> None:
        self.model_name = model_name

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            model = _get_model(self.model_name)
            embeddings = model.encode(texts, normalize_embeddings=True)
        except Exception as e:
            raise EmbeddingError(f"Embedding failed with {self.model_name}: {e}") from e
        return embeddings.tolist()
