"""Query analysis - rule-based scope gate, category detection and route hint."""

import re
from dataclasses import dataclass

from portfolio_chat.config import config
from portfolio_chat.logger import logger
from portfolio_chat.models import Category, CategoryMatch, QueryAnalysis, QueryType, Route


@dataclass(frozen=True)
class CategoryPattern:
    keywords: tuple[str, ...]
    phrases: tuple[str, ...]
    weight: float


# Table order is the tie-break order for equal confidences.
CATEGORY_PATTERNS: dict[Category, CategoryPattern] = {
    Category.BIO: CategoryPattern(
        keywords=("bio", "about", "background", "personal", "story", "marvin", "romero", "who"),
        phrases=("tell me about", "who is", "what is", "background of"),
        weight=1.0,
    ),
    Category.CONTACT: CategoryPattern(
        keywords=("contact", "email", "phone", "reach", "hire", "available", "linkedin", "github", "social"),
        phrases=("how to contact", "get in touch", "reach out", "hire marvin", "contact information"),
        weight=1.2,
    ),
    Category.SKILLS: CategoryPattern(
        keywords=("skills", "programming", "languages", "tech", "technical", "technologies", "tools", "frameworks"),
        phrases=("what skills", "programming languages", "technical skills", "technologies used"),
        weight=1.1,
    ),
    Category.EXPERIENCE: CategoryPattern(
        keywords=("experience", "work", "job", "career", "intern", "internship", "employment", "company", "role"),
        phrases=("work experience", "previous jobs", "career history", "where worked"),
        weight=1.1,
    ),
    Category.PROJECTS: CategoryPattern(
        keywords=("projects", "built", "created", "developed", "made", "portfolio", "work", "app", "website"),
        phrases=("what projects", "things built", "portfolio projects", "apps created"),
        weight=1.0,
    ),
    Category.EDUCATION: CategoryPattern(
        keywords=("education", "school", "college", "university", "degree", "studied", "occidental"),
        phrases=("where studied", "educational background", "college experience"),
        weight=0.9,
    ),
    Category.ACHIEVEMENTS: CategoryPattern(
        keywords=("achievements", "awards", "recognition", "accomplishments", "honors"),
        phrases=("achievements earned", "awards received"),
        weight=0.8,
    ),
    Category.LEADERSHIP: CategoryPattern(
        keywords=("leadership", "volunteer", "organizations", "activities", "lead", "mentor"),
        phrases=("leadership experience", "volunteer work"),
        weight=0.8,
    ),
    Category.INTERESTS: CategoryPattern(
        keywords=("interests", "hobbies", "personal", "outside", "free", "time"),
        phrases=("personal interests", "outside work", "free time"),
        weight=0.7,
    ),
}

PORTFOLIO_KEYWORDS = (
    # personal
    "background", "bio", "about",
    # professional
    "experience", "work", "job", "intern", "project", "skill", "tech", "programming",
    "education", "college", "university", "degree",
    # contact
    "contact", "email", "reach", "hire", "available",
    # technologies
    "react", "next", "javascript", "python", "node", "database",
    # questions addressed to the assistant
    "you", "your",
)

OFF_TOPIC_KEYWORDS = (
    "weather", "news", "stock", "crypto", "bitcoin",
    "politics", "sports", "celebrity", "entertainment",
    "recipe", "health", "medical", "legal",
)

QUERY_STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
    "by", "from", "about", "what", "how", "when", "where", "who", "why", "which",
    "is", "are", "was", "were", "be", "been", "being", "have", "has", "had", "do",
    "does", "did", "will", "would", "could", "should", "can", "may", "might",
})

MAX_QUERY_KEYWORDS = 10
EXACT_HINT_MAX_CHARS = 50

QUERY_TYPES = {
    Category.CONTACT: QueryType.CONTACT,
    Category.SKILLS: QueryType.TECHNICAL,
    Category.PROJECTS: QueryType.TECHNICAL,
    Category.EXPERIENCE: QueryType.EXPERIENCE,
    Category.BIO: QueryType.PERSONAL,
    Category.INTERESTS: QueryType.PERSONAL,
}


def extract_query_keywords(query: str) -> list[str]:
    """Content words of a query: lowercase, no punctuation, stop words or bare numbers."""
    words = re.sub(r"[^\w\s]", " ", query.lower()).split()
    keywords = [
        w for w in words
        if len(w) > 2 and w not in QUERY_STOP_WORDS and not w.isdigit()
    ]
    return keywords[:MAX_QUERY_KEYWORDS]


def detect_categories(query: str) -> list[CategoryMatch]:
    """
    Score each category by substring hits in the normalized query.

    Keywords count 1, phrases 2, times the category weight; confidence is
    min(1, score / 3). Categories that score zero are omitted.
    """
    matches = []
    for category, pattern in CATEGORY_PATTERNS.items():
        score = 0.0
        matched = []
        for keyword in pattern.keywords:
            if keyword in query:
                score += 1
                matched.append(keyword)
        for phrase in pattern.phrases:
            if phrase in query:
                score += 2
                matched.append(phrase)
        score *= pattern.weight
        if score > 0:
            matches.append(CategoryMatch(category=category, confidence=min(1.0, score / 3), matched_terms=matched))

    # sorted() is stable, so ties keep table order
    return sorted(matches, key=lambda m: m.confidence, reverse=True)


def overall_confidence(categories: list[CategoryMatch], keywords: list[str], query: str) -> float:
    """Blend of top-category confidence, keyword density and query brevity."""
    if not categories and not keywords:
        return 0.0
    category_confidence = categories[0].confidence if categories else 0.0
    keyword_density = min(1.0, len(keywords) / 10)
    word_count = len(query.split())
    clarity = min(1.0, max(0.3, 1.0 - (word_count - 5) * 0.1))
    return min(1.0, category_confidence * 0.6 + keyword_density * 0.2 + clarity * 0.2)


def suggest_route(query: str, categories: list[CategoryMatch], confidence: float) -> Route:
    """Advisory route hint; the routing policy makes the real decision."""
    if len(query) < EXACT_HINT_MAX_CHARS and confidence > 0.8:
        return Route.EXACT
    if confidence > 0.7 and categories:
        return Route.CATEGORY
    if 0.4 < confidence < 0.7:
        return Route.KEYWORD
    if confidence > 0.2:
        return Route.FULL
    return Route.REJECT


def query_type_for(categories: list[CategoryMatch]) -> QueryType:
    if not categories:
        return QueryType.GENERAL
    return QUERY_TYPES.get(categories[0].category, QueryType.GENERAL)


class QueryAnalyzer:
    """Classifies user queries without any model call."""

    def __init__(self, owner_name: str | None = None):
        name = owner_name if owner_name is not None else config.owner_name
        name_tokens = tuple(t for t in name.lower().split() if t)
        self.portfolio_keywords = name_tokens + PORTFOLIO_KEYWORDS
        self.off_topic_keywords = OFF_TOPIC_KEYWORDS

    def is_portfolio_query(self, query: str) -> bool:
        """Binary scope gate: off-topic terms win over portfolio terms."""
        lowered = query.lower()
        if any(k in lowered for k in self.off_topic_keywords):
            return False
        return any(k in lowered for k in self.portfolio_keywords)

    def analyze(self, query: str, strict_mode: bool | None = None) -> QueryAnalysis:
        """
        Analyze a user query.

        Args:
            query: The user's message
            strict_mode: Reject out-of-scope queries outright (defaults to config)

        Returns:
            QueryAnalysis with scope, categories, keywords and a route hint
        """
        strict = config.strict_portfolio_mode if strict_mode is None else strict_mode

        if not query or not query.strip():
            return QueryAnalysis(original_query=query or "", is_in_scope=False)

        normalized = query.lower().strip()
        in_scope = self.is_portfolio_query(query)

        if not in_scope and strict:
            logger.info(f"Query out of scope: {query[:80]!r}")
            return QueryAnalysis(
                original_query=query,
                is_in_scope=False,
                confidence=1.0,
                suggested_route=Route.REJECT,
            )

        keywords = extract_query_keywords(normalized)
        categories = detect_categories(normalized)
        confidence = overall_confidence(categories, keywords, normalized)

        analysis = QueryAnalysis(
            original_query=query,
            is_in_scope=in_scope,
            detected_categories=categories,
            extracted_keywords=keywords,
            confidence=confidence,
            query_type=query_type_for(categories),
            suggested_route=suggest_route(normalized, categories, confidence),
        )
        logger.info(
            f"Query analysis: scope={in_scope} confidence={confidence:.2f} "
            f"top={analysis.top_category.value if analysis.top_category else None} "
            f"hint={analysis.suggested_route.value}"
        )
        return analysis
