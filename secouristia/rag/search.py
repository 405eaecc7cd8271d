"""Hybrid retrieval: lexical substring pass plus vector similarity pass.

Both passes are merged lexical-first, deduplicated by record id (first
occurrence wins), re-scored by title relevance, filtered by category,
sorted and truncated.
"""

import logging

from secouristia.config import ScoringPolicy
from secouristia.models import SearchResult
from secouristia.rag.relevance import RelevanceScorer, extract_keywords
from secouristia.rag.retry import RetryPolicy

logger = logging.getLogger(__name__)


class HybridSearchEngine:
    """Retrieval core combining exact keyword matches and vector neighbours.

    Args:
        embedder: Object exposing ``embed_query(text) -> list[float]``.
        store: Object exposing ``substring_filter`` and ``nearest_neighbors``.
        policy: Ranking constants.
        retry: Retry policy wrapping every store and embedding call.
    """

    def __init__(
        self,
        embedder,
        store,
        policy: ScoringPolicy | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self.embed = embedder
        self.store = store
        self.policy = policy or ScoringPolicy()
        self.retry = retry or RetryPolicy()
        self.scorer = RelevanceScorer(self.policy)

    def lexical_pass(
        self, original_query: str, category_filter: str | None = None
    ) -> list[SearchResult]:
        """Records containing the first keywords of the user's own words.

        Args:
            original_query: Question as typed by the user.
            category_filter: Optional source-name substring.

        Returns:
            Hits scored from the lexical base plus a keyword-coverage bonus.
        """
        keywords = extract_keywords(original_query)
        if not keywords:
            return []
        records = self.retry.call(
            self.store.substring_filter,
            keywords[: self.policy.lexical_filter_terms],
            category_filter,
            self.policy.lexical_limit,
            description="substring filter",
        )
        return [
            SearchResult(
                id=rec.id,
                content=rec.content,
                source=rec.source,
                similarity=self.scorer.lexical_score(rec.content, keywords),
                fiche_ref=rec.fiche_ref,
            )
            for rec in records
        ]

    def vector_pass(
        self, technical_query: str, category_filter: str | None = None
    ) -> list[SearchResult]:
        q_emb = self.retry.call(self.embed.embed_query, technical_query, description="query embedding")
        return self.retry.call(
            self.store.nearest_neighbors,
            q_emb,
            self.policy.vector_threshold,
            self.policy.vector_limit,
            category_filter,
            description="nearest neighbors",
        )

    def search(
        self,
        technical_query: str,
        original_query: str,
        category_filter: str | None = None,
    ) -> list[SearchResult]:
        """Run both passes and return at most ``top_k`` ranked results.

        A failing pass is logged and skipped; the other pass still answers.

        Args:
            technical_query: Keyword-dense reformulation, used for the vector pass.
            original_query: User question, used for the lexical pass and gating.
            category_filter: Optional source-name substring (e.g. ``PSC``).

        Returns:
            Results sorted by similarity, best first. Empty when nothing matched.
        """
        try:
            lexical_hits = self.lexical_pass(original_query, category_filter)
        except Exception as e:
            logger.error(f"Lexical search failed: {e}")
            lexical_hits = []

        try:
            vector_hits = self.vector_pass(technical_query, category_filter)
        except Exception as e:
            logger.error(f"Vector search failed, continuing with lexical results only: {e}")
            vector_hits = []

        logger.info(f"Hybrid search: {len(lexical_hits)} lexical hits, {len(vector_hits)} vector hits")

        relevance_keywords = self.scorer.relevance_keywords(original_query)
        seen: set[int] = set()
        combined: list[SearchResult] = []
        for hit in [*lexical_hits, *vector_hits]:
            if hit.id in seen:
                continue
            seen.add(hit.id)
            combined.append(self.scorer.gate(hit, relevance_keywords))

        if category_filter:
            wanted = category_filter.upper()
            combined = [hit for hit in combined if wanted in hit.source.upper()]

        # sorted() is stable: ties keep merge order
        ranked = sorted(combined, key=lambda hit: hit.similarity, reverse=True)
        return ranked[: self.policy.top_k]
