"""Email classification package.

Scoring, reference-number handling and reclassification of firm mailboxes.
The FastAPI router lives in ``.routes`` and is mounted by ``app.main``.
"""

from .references import extract_reference_numbers, normalize_reference
from .contacts import ContactMatcher, build_match_predicate
from .schemas import BatchResult, ClassificationResult
from .scoring import ClassificationScorer
from .court_folder import CourtFolderMatcher
from .reclassifier import AssignmentError, EmailReclassifier, ReclassificationError

__all__ = [
    "normalize_reference",
    "extract_reference_numbers",
    "ContactMatcher",
    "build_match_predicate",
    "BatchResult",
    "ClassificationResult",
    "ClassificationScorer",
    "CourtFolderMatcher",
    "EmailReclassifier",
    "ReclassificationError",
    "AssignmentError",
]
