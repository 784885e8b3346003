"""Labeled portfolio document segmentation and ingestion."""

import re
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from portfolio_chat.config import config
from portfolio_chat.errors import IngestionError, RetrievalFailure
from portfolio_chat.logger import logger
from portfolio_chat.models import Category, Chunk, LabeledSection, ProcessingResult
from portfolio_chat.utils.text import estimate_token_count, last_words

from .embeddings import Embedder


LABEL_PATTERN = re.compile(r"(?:^|\s)\[([A-Z_]+)\]", re.MULTILINE)
REQUIRED_LABELS = ("BIO", "CONTACT", "SKILLS")

LABEL_CATEGORY_MAP: dict[str, Category] = {
    # Personal
    "BIO": Category.BIO,
    "ABOUT": Category.BIO,
    "BACKGROUND": Category.BIO,
    "PERSONAL": Category.BIO,
    "INTRO": Category.BIO,
    "INTRODUCTION": Category.BIO,
    # Contact
    "CONTACT": Category.CONTACT,
    "REACH": Category.CONTACT,
    "EMAIL": Category.CONTACT,
    "PHONE": Category.CONTACT,
    "SOCIAL": Category.CONTACT,
    "LINKEDIN": Category.CONTACT,
    "GITHUB": Category.CONTACT,
    # Education
    "EDUCATION": Category.EDUCATION,
    "SCHOOL": Category.EDUCATION,
    "COLLEGE": Category.EDUCATION,
    "UNIVERSITY": Category.EDUCATION,
    "DEGREE": Category.EDUCATION,
    "ACADEMIC": Category.EDUCATION,
    # Experience
    "EXPERIENCE": Category.EXPERIENCE,
    "WORK": Category.EXPERIENCE,
    "JOB": Category.EXPERIENCE,
    "EMPLOYMENT": Category.EXPERIENCE,
    "CAREER": Category.EXPERIENCE,
    "INTERN": Category.EXPERIENCE,
    "INTERNSHIP": Category.EXPERIENCE,
    # Skills
    "SKILLS": Category.SKILLS,
    "TECHNICAL": Category.SKILLS,
    "TECH": Category.SKILLS,
    "PROGRAMMING": Category.SKILLS,
    "LANGUAGES": Category.SKILLS,
    "TOOLS": Category.SKILLS,
    "TECHNOLOGIES": Category.SKILLS,
    # Projects
    "PROJECTS": Category.PROJECTS,
    "PROJECT": Category.PROJECTS,
    "BUILD": Category.PROJECTS,
    "CREATED": Category.PROJECTS,
    "DEVELOPED": Category.PROJECTS,
    "PORTFOLIO": Category.PROJECTS,
    # Achievements
    "ACHIEVEMENTS": Category.ACHIEVEMENTS,
    "AWARDS": Category.ACHIEVEMENTS,
    "HONORS": Category.ACHIEVEMENTS,
    "RECOGNITION": Category.ACHIEVEMENTS,
    "ACCOMPLISHMENTS": Category.ACHIEVEMENTS,
    # Leadership
    "LEADERSHIP": Category.LEADERSHIP,
    "LEAD": Category.LEADERSHIP,
    "VOLUNTEER": Category.LEADERSHIP,
    "ORGANIZATIONS": Category.LEADERSHIP,
    "ACTIVITIES": Category.LEADERSHIP,
    # Interests
    "INTERESTS": Category.INTERESTS,
    "HOBBIES": Category.INTERESTS,
    "PERSONAL_INTERESTS": Category.INTERESTS,
    "OUTSIDE_WORK": Category.INTERESTS,
}

HIGH_PRIORITY_LABELS = frozenset({"BIO", "ABOUT", "SKILLS", "EXPERIENCE", "PROJECTS", "CONTACT"})
PRIORITY_IMPORTANCE = 1.5

MAX_KEYWORDS = 25

TECH_PATTERN = re.compile(
    r"\b(?:react|vue|angular|node|python|java|javascript|typescript|css|html|sql|mongodb|"
    r"postgresql|mysql|redis|aws|docker|kubernetes|git|github|api|rest|graphql|nextjs|"
    r"express|flask|django|tailwind|bootstrap|go|rust|c\+\+|c#)(?![\w+#])",
    re.IGNORECASE,
)
PROPER_NOUN_PATTERN = re.compile(r"\b[A-Z][a-zA-Z]*(?:\s+[A-Z][a-zA-Z]*)*\b")
YEAR_PATTERN = re.compile(r"\b(?:19|20)\d{2}\b")

PORTFOLIO_TERMS = (
    "react", "javascript", "python", "node", "express", "mongodb", "sql", "postgresql",
    "nextjs", "tailwind", "css", "html", "typescript", "git", "github", "api", "rest",
    "frontend", "backend", "fullstack", "web", "mobile", "app", "application",
    "intern", "internship", "project", "experience", "work", "job", "developer",
    "engineering", "software", "computer", "science", "university", "college",
    "portfolio", "resume", "contact", "email", "hire", "available",
)
ACTION_WORDS = ("developed", "built", "created", "designed", "implemented", "managed", "led", "collaborated")

STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from",
    "has", "he", "in", "is", "it", "its", "of", "on", "that", "the",
    "to", "was", "will", "with", "have", "had", "been", "this", "these",
    "they", "were", "there", "their", "his", "her", "him", "them", "we",
    "you", "your", "our", "us", "i", "me", "my", "mine", "she", "but", "or",
})


class KeywordExtractor:
    """Heuristic keyword extraction for zero-cost keyword retrieval.

    Subclass and override `extract` to swap in a different tokenizer; the
    segmenter only relies on the method signature.
    """

    def __init__(self, max_keywords: int = MAX_KEYWORDS, extra_terms: tuple[str, ...] = ()):
        self.max_keywords = max_keywords
        self.terms = tuple(PORTFOLIO_TERMS) + tuple(t.lower() for t in extra_terms)

    def extract(self, content: str, label: str) -> list[str]:
        if not content:
            return []

        # dict preserves first-seen order
        keywords: dict[str, None] = {label.lower(): None}

        for tech in TECH_PATTERN.findall(content):
            keywords[tech.lower()] = None

        for noun in PROPER_NOUN_PATTERN.findall(content):
            if 2 < len(noun) < 20:
                keywords[noun.lower()] = None

        content_lower = content.lower()
        for term in self.terms:
            if term in content_lower:
                keywords[term] = None

        for year in YEAR_PATTERN.findall(content):
            keywords[year] = None

        for word in ACTION_WORDS:
            if word in content_lower:
                keywords[word] = None

        for token in re.sub(r"[^\w\s]", " ", content_lower).split():
            if len(token) > 2 and token not in STOP_WORDS and not token.isdigit():
                keywords[token] = None

        return list(keywords)[: self.max_keywords]


def extract_sections(document: str) -> list[LabeledSection]:
    """Split a `[LABEL] content` document into contiguous labeled sections.

    Sections with no content after the label are dropped here; callers that need
    to report them should compare against the raw label positions.
    """
    if not document or not document.strip():
        return []

    positions = []
    for match in LABEL_PATTERN.finditer(document):
        start = match.start() + match.group(0).index("[")
        positions.append((match.group(1), start, match.end()))

    sections = []
    for i, (label, _, content_start) in enumerate(positions):
        content_end = positions[i + 1][1] if i + 1 < len(positions) else len(document)
        content = document[content_start:content_end].strip()
        if content:
            sections.append(
                LabeledSection(
                    label=label,
                    content=content,
                    start_offset=content_start,
                    end_offset=content_end,
                )
            )
    return sections


def find_labels(document: str) -> list[str]:
    """All label tokens in document order, including ones with empty sections."""
    return [m.group(1) for m in LABEL_PATTERN.finditer(document or "")]


def map_label_to_category(label: str) -> Category | None:
    """Map a raw section label (or alias) to its portfolio category."""
    if not label:
        return None
    return LABEL_CATEGORY_MAP.get(label.strip().upper())


def _split_sentences(content: str) -> list[str]:
    return [s.strip() for s in re.split(r"(?<=[.!?])\s+", content.strip()) if s.strip()]


def segment_into_chunks(
    content: str,
    max_size: int,
    overlap: int,
    min_size: int,
    token_counter: Callable[[str], int] = estimate_token_count,
) -> list[str]:
    """
    Split section content into chunks on sentence boundaries.

    Content within `max_size` tokens is returned whole. Otherwise sentences are
    packed greedily; each new chunk starts with the trailing ~`overlap` tokens of
    the previous one. A trailing chunk under `min_size` tokens is dropped unless
    it would be the only chunk.
    """
    if not content or not content.strip():
        return []

    if token_counter(content) <= max_size:
        return [content.strip()]

    chunks: list[str] = []
    current = ""
    current_tokens = 0

    for sentence in _split_sentences(content):
        sentence_tokens = token_counter(sentence)

        if current and current_tokens + sentence_tokens > max_size:
            chunks.append(current.strip())
            overlap_text = last_words(current, overlap)
            current = f"{overlap_text} {sentence}".strip()
            current_tokens = token_counter(current)
        else:
            current = f"{current} {sentence}".strip()
            current_tokens += sentence_tokens

    if current.strip():
        if not chunks or token_counter(current) >= min_size:
            chunks.append(current.strip())

    return chunks if chunks else [content.strip()]


def validate_document_format(document: str) -> tuple[bool, list[str]]:
    """Check the document has labels and every required section."""
    errors = []
    if not document or not document.strip():
        return False, ["Document is empty"]

    labels = set(find_labels(document))
    if not labels:
        errors.append("No labels found. Expected format: [LABEL] content")

    for required in REQUIRED_LABELS:
        if required not in labels:
            errors.append(f"Missing required section: [{required}]")

    return not errors, errors


@dataclass
class ProcessingOptions:
    """Knobs for `process_labeled_document`; sizes are token estimates."""
    max_chunk_size: int = 300
    chunk_overlap: int = 50
    min_chunk_size: int = 50
    priority_sections: list[str] = field(default_factory=list)
    source_file: str = "portfolio_data"

    @classmethod
    def from_config(cls, source_file: str = "portfolio_data") -> "ProcessingOptions":
        return cls(
            max_chunk_size=config.max_chunk_size,
            chunk_overlap=config.chunk_overlap,
            min_chunk_size=config.min_chunk_size,
            priority_sections=list(config.priority_sections),
            source_file=source_file,
        )


def process_labeled_document(
    document: str,
    options: ProcessingOptions | None = None,
    keyword_extractor: KeywordExtractor | None = None,
    token_counter: Callable[[str], int] = estimate_token_count,
) -> ProcessingResult:
    """
    Convert a labeled portfolio document into chunks with metadata.

    Raises:
        IngestionError: if the document contains no labeled sections at all.
    """
    options = options or ProcessingOptions()
    extractor = keyword_extractor or KeywordExtractor()

    sections = extract_sections(document)
    if not sections:
        raise IngestionError("No labeled sections found in document. Expected format: [LABEL] content")

    logger.info(f"Found {len(sections)} labeled sections")

    errors: list[str] = []
    chunks: list[Chunk] = []
    distribution: dict[str, int] = {}
    total_tokens = 0
    priority = HIGH_PRIORITY_LABELS | {s.upper() for s in options.priority_sections}

    content_labels = {s.label for s in sections}
    for label in find_labels(document):
        if label not in content_labels:
            errors.append(f"Empty section: [{label}]")

    for section in sections:
        category = map_label_to_category(section.label)
        if category is None:
            errors.append(f"Unknown label: {section.label}")
            continue

        importance = PRIORITY_IMPORTANCE if section.label.upper() in priority else 1.0
        pieces = segment_into_chunks(
            section.content,
            options.max_chunk_size,
            options.chunk_overlap,
            options.min_chunk_size,
            token_counter=token_counter,
        )

        for i, piece in enumerate(pieces):
            token_count = token_counter(piece)
            if len(pieces) > 1 and token_count < options.min_chunk_size:
                continue

            subcategory = (
                f"{section.label.lower()}_part_{i + 1}" if len(pieces) > 1 else section.label.lower()
            )
            chunks.append(
                Chunk(
                    content=piece.strip(),
                    category=category,
                    subcategory=subcategory,
                    keywords=extractor.extract(piece, section.label),
                    importance_score=importance,
                    token_count=token_count,
                    order=len(chunks),
                    source_file=options.source_file,
                    position=distribution.get(category.value, 0),
                )
            )
            total_tokens += token_count
            distribution[category.value] = distribution.get(category.value, 0) + 1

    logger.info(f"Document processing complete: {len(chunks)} chunks created")
    if errors:
        logger.warning(f"Document processing reported {len(errors)} section errors: {errors}")

    return ProcessingResult(
        chunks=chunks,
        total_chunks=len(chunks),
        total_tokens=total_tokens,
        category_distribution=distribution,
        processing_errors=errors,
    )


class PortfolioIngestor:
    """Handles document validation, chunking, and embedding generation."""

    def __init__(
        self,
        embedder: Embedder | None = None,
        keyword_extractor: KeywordExtractor | None = None,
        batch_size: int | None = None,
    ):
        self.embedder = embedder or Embedder()
        self.keyword_extractor = keyword_extractor or KeywordExtractor()
        self.batch_size = batch_size or config.embedding_batch_size

    def ingest(self, document: str, options: ProcessingOptions | None = None) -> ProcessingResult:
        """
        Validate, segment and embed a labeled document.

        Args:
            document: Labeled portfolio text
            options: Chunking options (defaults come from config)

        Returns:
            ProcessingResult whose chunks carry validated embeddings

        Raises:
            IngestionError: if required sections are missing or no labels exist
        """
        is_valid, errors = validate_document_format(document)
        if not is_valid:
            raise IngestionError("Document format validation failed", errors)

        result = process_labeled_document(
            document,
            options or ProcessingOptions.from_config(),
            keyword_extractor=self.keyword_extractor,
        )
        embedded, embed_errors = self._generate_embeddings(result.chunks)

        distribution: dict[str, int] = {}
        for chunk in embedded:
            distribution[chunk.category.value] = distribution.get(chunk.category.value, 0) + 1

        return ProcessingResult(
            chunks=embedded,
            total_chunks=len(embedded),
            total_tokens=sum(c.token_count for c in embedded),
            category_distribution=distribution,
            processing_errors=result.processing_errors + embed_errors,
        )

    def _generate_embeddings(self, chunks: list[Chunk]) -> tuple[list[Chunk], list[str]]:
        """Embed chunks in batches; chunks that fail are reported and skipped."""
        embedded: list[Chunk] = []
        errors: list[str] = []

        for i in range(0, len(chunks), self.batch_size):
            batch = chunks[i : i + self.batch_size]
            try:
                vectors = self.embedder.embed_batch([c.content for c in batch])
            except RetrievalFailure as e:
                logger.error(f"Error generating embeddings for batch starting at {i}: {e}")
                errors.extend(f"Embedding failed for chunk {c.id}: {e}" for c in batch)
                continue

            for chunk, vector in zip(batch, vectors):
                embedded.append(replace(chunk, embedding=vector))

        return embedded, errors
