"""Reference-number path over the firm-wide CourtUnassigned queue.

Court correspondence that matched no case waits in ``CourtUnassigned``. When
a case gains a reference number, the queue is scanned and any email whose
full text carries that number (in any spelling) is filed to the case at full
confidence.
"""

from __future__ import annotations

import logging
from typing import Sequence

from ..config import settings
from ..models import EmailClassificationState, EmailMatchType
from .assignment import CaseAssigner
from .content import searchable_text
from .references import extract_reference_numbers, normalize_reference, references_match
from .repository import ClassificationRepository
from .schemas import BatchResult, CaseProfile, EmailForClassification

logger = logging.getLogger(__name__)

REFERENCE_MATCH_CONFIDENCE = 1.0
REFERENCE_MATCH_ACTOR = "system:reference-match"


class CourtFolderMatcher:
    def __init__(
        self,
        repository: ClassificationRepository,
        batch_limit: int | None = None,
        assigner: CaseAssigner | None = None,
    ):
        self.repository = repository
        self.batch_limit = batch_limit or settings.RECLASSIFY_BATCH_LIMIT
        self.assigner = assigner or CaseAssigner(repository)

    def match_email(
        self, email: EmailForClassification, references: Sequence[str]
    ) -> str | None:
        """Return the case reference found anywhere in the email, if any."""
        text = searchable_text(email.subject, email.body_preview, email.body_content)
        found = extract_reference_numbers(text)
        if not found:
            return None
        return references_match(found, references)

    def run(self, case: CaseProfile, reference_number: str | None) -> BatchResult:
        result = BatchResult()

        references: list[str] = []
        seen: set[str] = set()
        for ref in (*case.reference_numbers, reference_number):
            key = normalize_reference(ref)
            if key and key not in seen:
                seen.add(key)
                references.append(ref)  # type: ignore[arg-type]
        if not references:
            logger.warning(f"Case {case.id} has no usable reference numbers")
            return result

        emails = self.repository.find_court_unassigned(case.firm_id, self.batch_limit)
        logger.info(
            f"Scanning {len(emails)} court-unassigned emails for case {case.id} "
            f"(new reference {reference_number!r})"
        )

        for email in emails:
            result.scanned += 1
            try:
                matched = self.match_email(email, references)
                if not matched:
                    continue
                applied = self.assigner.assign(
                    email,
                    case.id,
                    case.client_id,
                    confidence=REFERENCE_MATCH_CONFIDENCE,
                    match_type=EmailMatchType.REFERENCE_NUMBER,
                    linked_by=REFERENCE_MATCH_ACTOR,
                    from_states=(EmailClassificationState.COURT_UNASSIGNED,),
                )
                if not applied:
                    continue
                result.reclassified += 1
                logger.debug(f"Court email {email.id} filed to case {case.id} ({matched})")
            except Exception as e:
                result.errors += 1
                logger.error(
                    f"Failed to match court email {email.id} for case {case.id} "
                    f"reference {reference_number!r}: {e}"
                )

        logger.info(
            f"Court folder scan for case {case.id}: {result.reclassified} filed, "
            f"{result.errors} errors"
        )
        return result
