import re

from secouristia.config import ScoringPolicy
from secouristia.models import SearchResult

# Interrogative and connective words that carry no topic
STOP_WORDS = frozenset(
    {
        "quoi", "que", "faire", "comment", "quel", "quelle", "quels", "quelles",
        "est", "sont", "cas", "pour", "dans", "avec", "sans", "lors", "une",
        "qui", "les", "des", "aux", "tenir", "face", "conduite", "doit", "faut",
        "peut", "quand", "elle", "cette", "entre",
    }
)

# Level or referential marker opening a fiche title: PSE①, PSE 2, PSC1, SST...
TITLE_MARKER_PATTERN = re.compile(r"(?:PSE\s*[①②12]?|PSC\s*[①1]?|SST)\s+(.+)", re.IGNORECASE)

_EDGE_PUNCTUATION = "?!.,;:()[]{}\"'«»…"


def _words(query: str) -> list[str]:
    words = (w.strip(_EDGE_PUNCTUATION) for w in query.lower().split())
    return [w for w in words if w]


def extract_keywords(query: str) -> list[str]:
    """Significant words of a question, in order of appearance.

    Words of four letters or more that are not stop words are kept.
    """
    keywords: list[str] = []
    for word in _words(query):
        if len(word) > 3 and word not in STOP_WORDS and word not in keywords:
            keywords.append(word)
    return keywords


def document_title(content: str) -> str:
    """Lower-cased title of a record, taken from its first line.

    The part following the level marker is used when there is one,
    the whole first line otherwise.
    """
    first_line = content.split("\n", 1)[0].lower()
    match = TITLE_MARKER_PATTERN.search(first_line)
    return match.group(1).strip() if match else first_line.strip()


class RelevanceScorer:
    """Scores lexical hits and penalizes off-topic results.

    All constants come from a ScoringPolicy so that tuning never touches
    the search control flow.
    """

    def __init__(self, policy: ScoringPolicy | None = None):
        self.policy = policy or ScoringPolicy()

    def relevance_keywords(self, query: str) -> list[str]:
        return [w for w in _words(query) if len(w) > self.policy.relevance_min_word_len]

    def lexical_score(self, content: str, keywords: list[str]) -> float:
        """Base score plus a bonus for the share of keywords present."""
        if not keywords:
            return self.policy.lexical_base
        content_lower = content.lower()
        matched = sum(1 for k in keywords if k in content_lower)
        score = self.policy.lexical_base + (matched / len(keywords)) * self.policy.lexical_bonus
        return min(score, self.policy.lexical_ceiling)

    def is_on_topic(self, content: str, relevance_keywords: list[str]) -> bool:
        title = document_title(content)
        return any(k in title for k in relevance_keywords)

    def gate(self, result: SearchResult, relevance_keywords: list[str]) -> SearchResult:
        """Penalize a result whose title shares no long query word.

        Results at or above the gate threshold are trusted as is.
        """
        if result.similarity >= self.policy.gate_threshold:
            return result
        if self.is_on_topic(result.content, relevance_keywords):
            return result
        return result.model_copy(
            update={"similarity": result.similarity * self.policy.gate_penalty}
        )
