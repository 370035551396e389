"""
Keyword-weighted link classifier.

Scores one anchor against per-category keyword sets and URL path patterns and
returns a DetectedLink for the best category, or None.  Pure function over a
single element: it never raises, and empty or odd input just scores zero.

Score for a category:
    sum(len(kw) for matched kw, +0.5*len(kw) if kw is a whole token)
    ----------------------------------------------------------------
                 sum(len(kw) for every kw in the category)
    + 0.5 if the href path contains one of the category's path patterns

Path patterns are matched against the URL path only, so a host such as
privacy.example does not lend its name to every link on the site.
"""

from typing import Optional, Union
from urllib.parse import urljoin, urlparse

from bs4 import Tag
from pydantic import BaseModel

from .schemas import DetectedLink, DocumentType
from .logger import get_module_logger

logger = get_module_logger("classifier")

DEFAULT_THRESHOLD = 0.1
EXACT_MATCH_BONUS = 0.5
URL_PATTERN_BONUS = 0.5

# Dict order is the tie-break order for equal scores.
KEYWORDS: dict[DocumentType, list[str]] = {
    DocumentType.TERMS: [
        'terms of service', 'terms of use', 'terms & conditions', 'terms and conditions',
        'user agreement', 'service agreement', 'legal terms', 'tos', 'conditions of use',
    ],
    DocumentType.PRIVACY: [
        'privacy policy', 'privacy notice', 'privacy statement', 'data policy',
        'data protection', 'privacy practices', 'information collection',
    ],
    DocumentType.COOKIES: [
        'cookie policy', 'cookie notice', 'cookie preferences', 'cookie settings',
        'cookies and tracking', 'cookie information',
    ],
    DocumentType.EULA: [
        'eula', 'end user license agreement', 'end-user license agreement',
        'licensing agreement', 'license agreement', 'software license',
    ],
}

URL_PATTERNS: dict[DocumentType, list[str]] = {
    DocumentType.TERMS: [
        '/terms', '/tos', '/terms-of-service', '/terms-of-use', '/terms-and-conditions',
        '/legal/terms', '/user-agreement',
    ],
    DocumentType.PRIVACY: ['/privacy', '/privacy-policy', '/data-policy', '/legal/privacy'],
    DocumentType.COOKIES: ['/cookie', '/cookies', '/cookie-policy'],
    DocumentType.EULA: ['/eula', '/license-agreement', '/end-user-license'],
}

# Links that never point at a document
SKIPPED_HREF_PREFIXES = ('javascript:', 'mailto:', 'tel:')


class Anchor(BaseModel):
    """The parts of an anchor element the classifier reads."""
    href: str = ""
    text: str = ""
    aria_label: str = ""
    title: str = ""

    @classmethod
    def from_tag(cls, tag: Tag, base_url: Optional[str] = None) -> "Anchor":
        """Read href/text/aria-label/title from a BeautifulSoup tag."""
        href = (tag.get('href') or '').strip()
        if base_url and href and not href.startswith('#'):
            href = urljoin(base_url, href)
        return cls(
            href=href,
            text=tag.get_text(separator=' ', strip=True),
            aria_label=tag.get('aria-label') or '',
            title=tag.get('title') or '',
        )


class LinkClassifier:
    """Classifies anchors into legal document types."""

    def __init__(
        self,
        threshold: float = DEFAULT_THRESHOLD,
        keywords: Optional[dict[DocumentType, list[str]]] = None,
        url_patterns: Optional[dict[DocumentType, list[str]]] = None
    ):
        self.threshold = threshold
        self.keywords = keywords or KEYWORDS
        self.url_patterns = url_patterns or URL_PATTERNS

    def score(self, anchor: Anchor) -> dict[DocumentType, float]:
        """Raw (unclamped) score per category."""
        path = urlparse(anchor.href).path.lower()
        combined = f"{anchor.text} {anchor.aria_label} {anchor.title} {anchor.href}".lower()
        tokens = set(combined.split())

        scores = {}
        for document_type, keywords in self.keywords.items():
            scores[document_type] = self._keyword_score(combined, tokens, keywords)
            if any(pattern in path for pattern in self.url_patterns.get(document_type, [])):
                scores[document_type] += URL_PATTERN_BONUS
        return scores

    @staticmethod
    def _keyword_score(combined: str, tokens: set[str], keywords: list[str]) -> float:
        score = 0.0
        max_score = 0.0

        for keyword in keywords:
            max_score += len(keyword)
            if keyword in combined:
                score += len(keyword)
                if keyword in tokens:
                    score += len(keyword) * EXACT_MATCH_BONUS

        return score / max_score if max_score > 0 else 0.0

    def best_match(self, anchor: Anchor) -> tuple[DocumentType, float]:
        """Argmax category and its raw score; the first category wins ties."""
        scores = self.score(anchor)
        best_type = max(scores, key=scores.get)
        return best_type, scores[best_type]

    def classify(
        self,
        element: Union[Tag, Anchor],
        base_url: Optional[str] = None,
        threshold: Optional[float] = None
    ) -> Optional[DetectedLink]:
        """
        Classify one anchor.

        Args:
            element: bs4 <a> tag or a pre-built Anchor
            base_url: Page URL used to resolve relative hrefs
            threshold: Override of the acceptance threshold for this call

        Returns:
            DetectedLink if the best score clears the threshold, None otherwise
        """
        if threshold is None:
            threshold = self.threshold

        if isinstance(element, Tag):
            anchor = Anchor.from_tag(element, base_url)
            source = element
        else:
            anchor = element
            source = None

        href = anchor.href.strip()
        if not href or href.startswith('#') or href.lower().startswith(SKIPPED_HREF_PREFIXES):
            return None

        document_type, raw_score = self.best_match(anchor)
        if raw_score <= threshold:
            return None

        logger.debug(f"Classified {href} as {document_type.value} ({raw_score:.3f})")
        return DetectedLink(
            url=href,
            display_text=anchor.text,
            document_type=document_type,
            # Keyword and URL bonuses can push the raw score past 1.0.
            confidence_score=min(1.0, max(0.0, raw_score)),
            source_element=source,
        )
