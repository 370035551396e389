"""
Pydantic schemas defining the contracts between components.

DetectedLink: Classifier → Scanner → presentation layer / service
Summary:      Summarizer → cache → service → caller

Data flow through the pipeline:
  Page anchors → LinkClassifier → DetectedLink → LinkScanner candidate set
  DetectedLink.url → DocumentFetcher → text → Summarizer → Summary (cached)
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class DocumentType(str, Enum):
    """Legal document categories, in classifier iteration order."""
    TERMS = "terms"
    PRIVACY = "privacy"
    COOKIES = "cookies"
    EULA = "eula"


class RedFlagCategory(str, Enum):
    ARBITRATION = "arbitration"
    AUTO_RENEWAL = "auto-renewal"
    DATA_SHARING = "data-sharing"
    LIABILITY = "liability"
    TERMINATION = "termination"
    OTHER = "other"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DataRightCategory(str, Enum):
    ACCESS = "access"
    DELETION = "deletion"
    PORTABILITY = "portability"
    CORRECTION = "correction"
    OPT_OUT = "opt-out"


# --- Detection output ---

class DetectedLink(BaseModel):
    """
    A legal-document link found on a page.

    Immutable once created.  source_element holds the bs4 Tag that produced
    the link; it is an opaque handle for the presentation layer and is left
    out of serialized output.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    url: str
    display_text: str
    document_type: DocumentType
    confidence_score: float = Field(ge=0.0, le=1.0)
    source_element: Optional[Any] = Field(default=None, exclude=True, repr=False)

    @property
    def dedupe_keys(self) -> tuple[str, tuple[str, DocumentType]]:
        """The two keys that must stay unique within one candidate set."""
        return self.url, (self.display_text, self.document_type)


# --- Summary output ---

class RedFlag(BaseModel):
    """A concerning clause reported by the model."""
    category: RedFlagCategory = RedFlagCategory.OTHER
    description: str = "No description provided"
    severity: Severity = Severity.MEDIUM
    quote: str = ""


class DataRight(BaseModel):
    """A user right over their data and how to exercise it."""
    category: DataRightCategory = DataRightCategory.ACCESS
    description: str = "No description provided"
    available: bool = False
    exercise_process: str = "Not specified"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex[:9]


class Summary(BaseModel):
    """Normalized result of one successful analysis."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    url: str
    document_type: DocumentType
    title: str = ""
    key_points: list[str] = Field(default_factory=list)
    red_flags: list[RedFlag] = Field(default_factory=list)
    data_rights: list[DataRight] = Field(default_factory=list)
    risk_score: float = Field(default=0.0, ge=0.0, le=1.0)
    generated_at: datetime = Field(default_factory=_now)
    cached: bool = False
    degraded: bool = False    # Model answer was unusable; placeholder content

    @model_validator(mode="before")
    @classmethod
    def _default_title(cls, data: Any) -> Any:
        # "privacy" -> "Privacy Summary"
        if isinstance(data, dict) and not data.get("title") and data.get("document_type"):
            document_type = DocumentType(data["document_type"])
            data = {**data, "title": f"{document_type.value.capitalize()} Summary"}
        return data


# --- Cache bookkeeping ---

class CacheEntry(BaseModel):
    """One stored payload plus its access bookkeeping (timestamps are epoch seconds)."""
    key: str
    payload: Any
    created_at: float
    last_accessed_at: float
    hit_count: int = 0


class CacheStats(BaseModel):
    total_entries: int = 0
    total_hits: int = 0
    oldest_entry: Optional[float] = None


# --- Rate limiting bookkeeping ---

class CredentialState(BaseModel):
    """Request counter for one credential inside its current rate window."""
    credential_id: str
    request_count_in_window: int = 0
    window_start: float = 0.0


class RotationStatus(BaseModel):
    total_keys: int
    available_keys: int
    configured: bool
