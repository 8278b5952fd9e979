"""Table-driven text heuristics for classifying events.

Every keyword list and pattern used to derive tags, categories, presenters
and audience lives in :class:`HeuristicTables`. The defaults can be replaced
wholesale or in part by a JSON file, so the tables can grow without code
changes.
"""
import json
import logging
import re
from dataclasses import dataclass, field, fields
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


DEFAULT_ABBREVIATIONS = {
    'amp': 'amphitheater',
    'cso': 'chautauqua symphony orchestra',
    'ctc': 'chautauqua theater company',
    'clsc': 'chautauqua literary and scientific circle',
    'ciwl': 'chautauqua institution womens league',
    'hop': 'hall of philosophy',
    'hoc': 'hall of christ',
}

DEFAULT_EVENT_TYPES = [
    'lecture', 'concert', 'recital', 'performance', 'workshop',
    'service', 'class', 'meeting', 'exhibition', 'tour',
    'discussion', 'presentation', 'ceremony', 'festival',
]

DEFAULT_PRIORITY_CATEGORIES = [
    'Interfaith Lecture Series',
    'Morning Lecture',
    'Chautauqua Symphony Orchestra',
    'Chautauqua Theater Company',
    'Visual Arts',
    'Recreation',
    'Special Events',
]

DEFAULT_SERIES = [
    'morning lecture',
    'interfaith lecture',
    'porch discussion',
    'master class',
    'symphony concert',
    'chamber music',
    'sunday service',
]

DEFAULT_DISCIPLINES = {
    'music': 'Music',
    'theater': 'Theater',
    'lecture': 'Education',
    'visual arts': 'Visual Arts',
    'dance': 'Dance',
    'literature': 'Literature',
    'religion': 'Religion',
    'philosophy': 'Philosophy',
    'science': 'Science',
}

# (keywords, category, subcategory), checked in order
DEFAULT_CATEGORY_RULES = [
    (['symphony', 'orchestra', 'concert', 'music'], 'Music', 'Classical'),
    (['lecture', 'morning lecture'], 'Education', 'Lectures'),
    (['interfaith', 'chapel', 'worship', 'prayer', 'meditation'], 'Religion', 'Worship'),
    (['theater', 'theatre', 'drama', 'play'], 'Arts', 'Theater'),
    (['dance', 'ballet'], 'Arts', 'Dance'),
    (['film', 'movie', 'cinema'], 'Entertainment', 'Film'),
    (['family', 'children', 'kids'], 'Family', 'Children'),
    (['dining', 'restaurant', 'food'], 'Dining', 'Restaurant'),
    (['recreation', 'sports', 'fitness'], 'Recreation', 'Sports'),
]

DEFAULT_PRESENTER_PATTERNS = [
    r'\bwith\s+([^,\n]+)',
    r'\bfeaturing\s+([^,\n]+)',
    r'\bby\s+([^,\n]+)',
    r':\s*([^,:\n]+)$',
    r'^([^:]+):\s',
    r'\s-\s([^-\n]+)$',
]

# Checked in order; first label with a matching keyword wins
DEFAULT_CONFIDENCE_KEYWORDS = [
    ('TBA', ['tba', 'to be announced']),
    ('tentative', ['tentative']),
    ('placeholder', ['placeholder']),
]

DEFAULT_AUDIENCE_KEYWORDS = [
    ('children', ['children', 'kids', 'youth']),
    ('family-friendly', ['family']),
    ('adult-oriented', ['adult', 'mature']),
]

DEFAULT_ICS_TAG_PATTERNS = [
    r'\b(free|ticketed|reservation required|rain location)\b',
    r'\b(all ages|family friendly|adult oriented)\b',
    r'\b(indoor|outdoor|amphitheater|hall)\b',
]

DEFAULT_GENERIC_CATEGORY_PATTERN = r'^(Chautauqua Institution Program|Week .+)$'

FREE_COST_PATTERN = re.compile(r'\$\s*0(?:\.0+)?(?!\d)|\bfree\b|\bno charge\b', re.IGNORECASE)


def normalize_tag(tag: str) -> str:
    """Lowercase a tag and collapse internal whitespace."""
    return ' '.join(tag.lower().split())


def slugify(text: str) -> str:
    """Lowercase text and join whitespace-separated words with hyphens."""
    return re.sub(r'\s+', '-', text.strip().lower())


def contains_word(text: str, keyword: str) -> bool:
    """Whole-word, case-insensitive search for a keyword or phrase."""
    return re.search(rf'\b{re.escape(keyword)}\b', text, re.IGNORECASE) is not None


def contains_word_prefix(text: str, keyword: str) -> bool:
    """Case-insensitive search for a word starting with keyword."""
    return re.search(rf'\b{re.escape(keyword)}', text, re.IGNORECASE) is not None


def is_free_cost(cost: Optional[str]) -> bool:
    """True when cost text says the event costs nothing."""
    return bool(cost) and FREE_COST_PATTERN.search(cost) is not None


def dedupe_tags(tags: List[str], min_length: int = 3) -> List[str]:
    """
    Normalize tags, dropping short ones and duplicates while keeping order.

    Args:
        tags: Candidate tags in discovery order
        min_length: Tags shorter than this are discarded

    Returns:
        Unique normalized tags
    """
    seen = set()
    result = []
    for tag in tags:
        normalized = normalize_tag(tag)
        if len(normalized) < min_length or normalized in seen:
            continue
        seen.add(normalized)
        result.append(normalized)
    return result


@dataclass
class HeuristicTables:
    """Keyword tables and patterns used by the normalizer and ICS adapter."""
    abbreviations: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_ABBREVIATIONS))
    event_types: List[str] = field(default_factory=lambda: list(DEFAULT_EVENT_TYPES))
    priority_categories: List[str] = field(default_factory=lambda: list(DEFAULT_PRIORITY_CATEGORIES))
    series: List[str] = field(default_factory=lambda: list(DEFAULT_SERIES))
    disciplines: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_DISCIPLINES))
    category_rules: List[Tuple[List[str], str, str]] = field(
        default_factory=lambda: [tuple(rule) for rule in DEFAULT_CATEGORY_RULES]
    )
    presenter_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_PRESENTER_PATTERNS))
    confidence_keywords: List[Tuple[str, List[str]]] = field(
        default_factory=lambda: [tuple(entry) for entry in DEFAULT_CONFIDENCE_KEYWORDS]
    )
    audience_keywords: List[Tuple[str, List[str]]] = field(
        default_factory=lambda: [tuple(entry) for entry in DEFAULT_AUDIENCE_KEYWORDS]
    )
    ics_tag_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_ICS_TAG_PATTERNS))
    generic_category_pattern: str = DEFAULT_GENERIC_CATEGORY_PATTERN
    fallback_category: Tuple[str, str] = ('General', 'Event')

    @classmethod
    def from_dict(cls, data: Dict) -> 'HeuristicTables':
        """Build tables from a mapping, using defaults for absent keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown heuristic tables: {', '.join(sorted(unknown))}")

        tables = cls()
        for name, value in data.items():
            if name in ('category_rules', 'confidence_keywords', 'audience_keywords'):
                value = [tuple(entry) for entry in value]
            elif name == 'fallback_category':
                value = tuple(value)
            setattr(tables, name, value)
        return tables

    @classmethod
    def from_file(cls, path: str) -> 'HeuristicTables':
        """Load table overrides from a JSON file."""
        logger.info(f"Loading heuristic tables from {path}")
        with open(path, 'r', encoding='utf-8') as handle:
            return cls.from_dict(json.load(handle))

    def expand_abbreviations(self, text: str) -> List[str]:
        return [full for abbr, full in self.abbreviations.items() if contains_word(text, abbr)]

    def match_event_types(self, text: str) -> List[str]:
        return [kind for kind in self.event_types if contains_word_prefix(text, kind)]

    def match_series(self, text: str) -> Optional[str]:
        for pattern in self.series:
            if pattern in text.lower():
                return pattern.title()
        return None

    def match_discipline(self, category_names: List[str]) -> Optional[str]:
        lowered = [name.lower() for name in category_names]
        for key, discipline in self.disciplines.items():
            if any(key in name for name in lowered):
                return discipline
        return None

    def categorize(self, categories: List[str], text: str) -> Tuple[str, str]:
        """
        Map categories or free text to a (category, subcategory) pair.

        Categories are checked against every rule before free text is.
        """
        for category in categories:
            lowered = category.lower()
            for keywords, name, subcategory in self.category_rules:
                if any(keyword in lowered for keyword in keywords):
                    return name, subcategory

        lowered = text.lower()
        for keywords, name, subcategory in self.category_rules:
            if any(keyword in lowered for keyword in keywords):
                return name, subcategory

        return self.fallback_category

    def extract_presenter(self, text: str) -> Optional[str]:
        for pattern in self.presenter_patterns:
            match = re.search(pattern, text, re.IGNORECASE)
            if match and match.group(1).strip():
                return match.group(1).strip()
        return None

    def assess_confidence(self, text: str) -> str:
        for label, keywords in self.confidence_keywords:
            if any(contains_word(text, keyword) for keyword in keywords):
                return label
        return 'confirmed'

    def infer_audience(self, text: str) -> str:
        for label, keywords in self.audience_keywords:
            if any(contains_word_prefix(text, keyword) for keyword in keywords):
                return label
        return 'all-ages'

    def is_generic_category(self, category: str) -> bool:
        return re.match(self.generic_category_pattern, category, re.IGNORECASE) is not None

    def match_ics_tags(self, text: str) -> List[str]:
        tags = []
        for pattern in self.ics_tag_patterns:
            for match in re.finditer(pattern, text, re.IGNORECASE):
                tags.append(slugify(match.group(0)))
        return tags
