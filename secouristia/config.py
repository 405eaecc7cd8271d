"""Application configuration settings.

This module defines the Settings dataclass that loads configuration
from environment variables, and the ScoringPolicy holding every
ranking constant of the hybrid search.
"""

from dataclasses import dataclass
import os

from secouristia.errors import ConfigurationError


@dataclass(frozen=True)
class ScoringPolicy:
    """Tunable constants of the hybrid search ranking.

    Attributes:
        lexical_base: Score given to every lexical hit.
        lexical_bonus: Bonus scaled by the share of keywords found in the hit.
        lexical_ceiling: Upper bound of a lexical score.
        lexical_filter_terms: Number of keywords used as conjunctive filter.
        lexical_limit: Maximum number of lexical hits.
        vector_threshold: Minimum cosine similarity of a vector hit.
        vector_limit: Maximum number of vector hits.
        relevance_min_word_len: Query words longer than this gate relevance.
        gate_threshold: Hits at or above this similarity are never penalized.
        gate_penalty: Factor applied to off-topic hits.
        top_k: Number of results returned.
    """

    lexical_base: float = 0.70
    lexical_bonus: float = 0.25
    lexical_ceiling: float = 0.95
    lexical_filter_terms: int = 2
    lexical_limit: int = 10
    vector_threshold: float = 0.20
    vector_limit: int = 10
    relevance_min_word_len: int = 4
    gate_threshold: float = 0.9
    gate_penalty: float = 0.4
    top_k: int = 5


@dataclass
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        ibm_cloud_api_key: IBM Cloud API key for authentication.
        watsonx_region: Watsonx.ai service region.
        watsonx_project_id: Watsonx.ai project ID.
        watsonx_embed_model: Embedding model ID.
        watsonx_gen_model: Generation model ID used for query reformulation.
        faiss_index_path: Path to FAISS index file.
        faiss_meta_path: Path to FAISS metadata file.
        documents_dir: Directory holding the source PDFs.
        chunk_size: Fallback chunk window size in characters.
        chunk_overlap: Overlap between consecutive chunk windows.
        min_chunk_chars: Chunks shorter than this are discarded.
        top_k: Number of search results returned.
        pacing_delay_sec: Pause after each successful ingestion write.
        failure_backoff_sec: Pause after a failed ingestion item.
        retry_max_attempts: Attempts per external call.
        retry_delay_sec: Pause between two attempts of an external call.
        structured_marker: File-name substring marking fiche-structured sources.
        temperature: Generation temperature.
        embedding_dim: Embedding dimension.
        log_level: Logging level name.
    """

    ibm_cloud_api_key: str
    watsonx_region: str
    watsonx_project_id: str
    watsonx_embed_model: str
    watsonx_gen_model: str

    faiss_index_path: str
    faiss_meta_path: str
    documents_dir: str

    chunk_size: int
    chunk_overlap: int
    min_chunk_chars: int
    top_k: int

    pacing_delay_sec: float
    failure_backoff_sec: float
    retry_max_attempts: int
    retry_delay_sec: float
    structured_marker: str

    temperature: float
    embedding_dim: int
    log_level: str

    @classmethod
    def from_env(cls) -> "Settings":
        """Create Settings instance from environment variables.

        Returns:
            Settings instance with values loaded from environment.
        """
        return cls(
            ibm_cloud_api_key=os.getenv("IBM_CLOUD_API_KEY", ""),
            watsonx_region=os.getenv("WATSONX_REGION", "eu-de"),
            watsonx_project_id=os.getenv("WATSONX_PROJECT_ID", ""),
            watsonx_embed_model=os.getenv(
                "WATSONX_EMBED_MODEL",
                "intfloat/multilingual-e5-large",
            ),
            watsonx_gen_model=os.getenv(
                "WATSONX_GEN_MODEL", "mistralai/mistral-large"
            ),
            faiss_index_path=os.getenv("FAISS_INDEX_PATH", "data/index.faiss"),
            faiss_meta_path=os.getenv("FAISS_META_PATH", "data/meta.json"),
            documents_dir=os.getenv("DOCUMENTS_DIR", "documents"),
            chunk_size=int(os.getenv("CHUNK_SIZE", "500")),
            chunk_overlap=int(os.getenv("CHUNK_OVERLAP", "100")),
            min_chunk_chars=int(os.getenv("MIN_CHUNK_CHARS", "50")),
            top_k=int(os.getenv("TOP_K", "5")),
            pacing_delay_sec=float(os.getenv("PACING_DELAY_SEC", "0.2")),
            failure_backoff_sec=float(os.getenv("FAILURE_BACKOFF_SEC", "3.0")),
            retry_max_attempts=int(os.getenv("RETRY_MAX_ATTEMPTS", "2")),
            retry_delay_sec=float(os.getenv("RETRY_DELAY_SEC", "1.0")),
            structured_marker=os.getenv("STRUCTURED_MARKER", "pse"),
            temperature=float(os.getenv("TEMPERATURE", "0.0")),
            embedding_dim=int(os.getenv("EMBEDDING_DIM", "1024")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    def scoring_policy(self) -> ScoringPolicy:
        """Build the ranking policy, honouring the configured top_k."""
        return ScoringPolicy(top_k=self.top_k)

    def validate_watsonx(self) -> None:
        """Fail fast when watsonx.ai credentials are missing.

        Raises:
            ConfigurationError: If the API key or project ID is unset.
        """
        missing = [
            name
            for name, value in (
                ("IBM_CLOUD_API_KEY", self.ibm_cloud_api_key),
                ("WATSONX_PROJECT_ID", self.watsonx_project_id),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Missing watsonx.ai configuration. Please set {', '.join(missing)}."
            )
        if self.chunk_overlap >= self.chunk_size:
            raise ConfigurationError(
                f"CHUNK_OVERLAP ({self.chunk_overlap}) must be smaller than "
                f"CHUNK_SIZE ({self.chunk_size})."
            )
