import numpy as np
from ibm_watsonx_ai import Credentials
from ibm_watsonx_ai.foundation_models import Embeddings as WXEmbeddings

from secouristia.config import Settings
from secouristia.errors import ExternalServiceError

VECTOR_KEYS = ("embedding", "vector", "values")


def _payload(response):
    return response.get_result() if hasattr(response, "get_result") else response


def _describe(data) -> str:
    keys = list(data.keys()) if isinstance(data, dict) else "n/a"
    return f"{type(data).__name__} keys={keys}"


def _item_vector(item: dict):
    for key in VECTOR_KEYS:
        if key in item:
            return item[key]
    return None


def _as_vector(data) -> list[float]:
    """Reduce any list-shaped embedding payload to a single vector.

    Accepts a flat vector, a batch of vectors (the first one is kept) or a
    batch of per-token vectors (the first item's tokens are averaged).
    """
    arr = np.asarray(data, dtype=np.float32)
    if arr.size == 0:
        raise ExternalServiceError("Empty embedding returned by watsonx.ai")
    if arr.ndim == 1:
        return arr.tolist()
    if arr.ndim == 2:
        return arr[0].tolist()
    if arr.ndim == 3:
        return arr[0].mean(axis=0).tolist()
    raise ExternalServiceError(f"Unexpected embedding rank from watsonx.ai: {arr.ndim}")


def _pool(item) -> list[float]:
    """One input's embedding: a vector, or per-token vectors averaged."""
    arr = np.asarray(item, dtype=np.float32)
    if arr.ndim == 2:
        return arr.mean(axis=0).tolist()
    if arr.ndim != 1 or arr.size == 0:
        raise ExternalServiceError(f"Unexpected embedding shape from watsonx.ai: {arr.shape}")
    return arr.tolist()


class EmbeddingClient:
    """watsonx.ai embedding adapter.

    Every response shape the service returns is reduced to one float
    vector per input; anything else raises ExternalServiceError.
    """

    def __init__(self, settings: Settings, client=None):
        self.settings = settings
        if client is None:
            credentials = Credentials(
                api_key=settings.ibm_cloud_api_key,
                url=f"https://{settings.watsonx_region}.ml.cloud.ibm.com",
            )
            client = WXEmbeddings(
                model_id=settings.watsonx_embed_model,
                project_id=settings.watsonx_project_id,
                credentials=credentials,
            )
        self.client = client

    def _request(self, method, arg):
        try:
            return _payload(method(arg))
        except Exception as e:
            raise ExternalServiceError(f"watsonx.ai embedding request failed: {e}") from e

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        data = self._request(self.client.embed_documents, texts)
        if isinstance(data, dict):
            # {"results": [{"embedding"|"vector"|"values": [...]}, ...]}
            results = data.get("results")
            if isinstance(results, list):
                vectors = [_item_vector(item) for item in results if isinstance(item, dict)]
                vectors = [v for v in vectors if v is not None]
                if vectors:
                    return [_pool(v) for v in vectors]
            # {"embeddings": [[...], ...]}
            if data.get("embeddings"):
                return [_pool(v) for v in data["embeddings"]]
        elif isinstance(data, list) and data and isinstance(data[0], list):
            return [_pool(v) for v in data]
        raise ExternalServiceError(f"Unexpected embeddings response from watsonx.ai: {_describe(data)}")

    def embed_query(self, text: str) -> list[float]:
        data = self._request(self.client.embed_query, text)
        if isinstance(data, dict):
            results = data.get("results")
            if isinstance(results, list) and results and isinstance(results[0], dict):
                vector = _item_vector(results[0])
                if vector is not None:
                    return _pool(vector)
            if "embedding" in data:
                return _pool(data["embedding"])
            if data.get("embeddings"):
                return _pool(data["embeddings"][0])
        elif isinstance(data, list) and data:
            return _as_vector(data)
        raise ExternalServiceError(
            f"Unexpected query embedding response from watsonx.ai: {_describe(data)}"
        )
