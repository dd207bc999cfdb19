"""External collaborators: archive DB, classifier, object storage, shortener."""

from .classifier import (
    Classification,
    ClassificationError,
    GeminiClassifier,
    fallback_category,
    fallback_classification,
    parse_classification,
    parse_date,
    should_classify,
)
from .db import ArchiveDB, MediaRecord, UserRecord
from .shortener import UrlShortener
from .storage import GcsStorage, StorageError

__all__ = [
    "ArchiveDB",
    "Classification",
    "ClassificationError",
    "GcsStorage",
    "GeminiClassifier",
    "MediaRecord",
    "StorageError",
    "UrlShortener",
    "UserRecord",
    "fallback_category",
    "fallback_classification",
    "parse_classification",
    "parse_date",
    "should_classify",
]
