"""Email-to-case scoring.

Per candidate case the scorer adds up independent signals:

- contact: sender (or, for sent mail, a recipient) is one of the case's
  contacts; a contact that points at exactly one case earns a bonus
- reference: a court-file number in the subject, preview or body equals one of
  the case's reference numbers (normalized on both sides)
- keywords: case keywords found in the subject or preview, capped

Confidence is ``min(score, 1.0)`` rounded to four places. The highest
confidence wins only when no other case shares it and it is strictly above the
firm threshold; two cases that both reach 1.0 are a tie however far past 1.0
their raw scores go. Anything else degrades to ClientInbox, CourtUnassigned,
Uncertain or Pending; the scorer never picks between tied cases.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from typing import Sequence

from ..models import EmailMatchType
from .contacts import ContactMatcher, build_match_predicate
from .content import searchable_text
from .references import extract_reference_numbers, references_match
from .repository import ClassificationRepository
from .schemas import (
    CaseProfile,
    ClassificationResult,
    EmailForClassification,
    ScoringWeights,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaseScore:
    case: CaseProfile
    score: float
    matched_address: str | None = None
    matched_reference: str | None = None
    keyword_hits: int = 0

    @property
    def confidence(self) -> float:
        return round(min(self.score, 1.0), 4)

    @property
    def match_type(self) -> EmailMatchType:
        if self.matched_reference:
            return EmailMatchType.REFERENCE_NUMBER
        if self.matched_address:
            return EmailMatchType.ACTOR
        return EmailMatchType.KEYWORD


def _count_keywords(keywords: Sequence[str], text: str) -> int:
    return sum(1 for kw in keywords if kw and kw.lower() in text)


class ClassificationScorer:
    def __init__(
        self,
        repository: ClassificationRepository,
        weights: ScoringWeights | None = None,
    ):
        self.repository = repository
        self.weights = weights or ScoringWeights.from_settings()

    def threshold_for(self, firm_id: uuid.UUID) -> float:
        override = self.repository.get_firm_threshold(firm_id)
        return override if override is not None else self.weights.threshold

    def candidate_cases(
        self, firm_id: uuid.UUID, owner_user_id: uuid.UUID | None
    ) -> list[CaseProfile]:
        member = owner_user_id if self.weights.team_scoped else None
        return self.repository.load_case_profiles(firm_id, member_user_id=member)

    def score_cases(
        self, email: EmailForClassification, cases: Sequence[CaseProfile]
    ) -> list[CaseScore]:
        """Raw per-case scores; cases with no signal are omitted."""
        w = self.weights
        matchers: dict[uuid.UUID, ContactMatcher] = {
            c.id: build_match_predicate(c.contact_emails, c.contact_domains)
            for c in cases
        }
        contact_hits: dict[uuid.UUID, str] = {}
        for c in cases:
            hit = matchers[c.id].match(email)
            if hit:
                contact_hits[c.id] = hit

        references = extract_reference_numbers(
            searchable_text(email.subject, email.body_preview, email.body_content)
        )
        keyword_text = searchable_text(email.subject, email.body_preview).lower()

        scores: list[CaseScore] = []
        for c in cases:
            score = 0.0
            address = contact_hits.get(c.id)
            if address:
                score += w.contact
                if len(contact_hits) == 1:
                    score += w.sole_case_bonus

            reference = (
                references_match(references, c.reference_numbers)
                if references
                else None
            )
            if reference:
                score += w.reference

            hits = _count_keywords(c.keywords, keyword_text) if keyword_text else 0
            if hits:
                score += min(hits * w.keyword, w.keyword_cap)

            if score > 0:
                scores.append(
                    CaseScore(
                        case=c,
                        score=score,
                        matched_address=address,
                        matched_reference=reference,
                        keyword_hits=hits,
                    )
                )
        return scores

    def _is_court_source(self, email: EmailForClassification) -> bool:
        emails, domains = self.repository.load_court_source_contacts(email.firm_id)
        if not emails and not domains:
            return False
        return build_match_predicate(emails, domains)(email)

    def _follow_thread(
        self, email: EmailForClassification, cases: Sequence[CaseProfile]
    ) -> ClassificationResult | None:
        if not email.conversation_id:
            return None
        case_id = self.repository.find_thread_assignment(
            email.firm_id, email.conversation_id, exclude_email_id=email.id
        )
        if case_id is None:
            return None
        for c in cases:
            if c.id == case_id:
                return ClassificationResult.classified(
                    c.id,
                    1.0,
                    EmailMatchType.THREAD_CONTINUITY,
                    client_id=c.client_id,
                )
        # Thread points at a case that is no longer a candidate
        return None

    def classify(
        self,
        email: EmailForClassification,
        firm_id: uuid.UUID,
        owner_user_id: uuid.UUID | None = None,
        *,
        cases: Sequence[CaseProfile] | None = None,
    ) -> ClassificationResult:
        if email.firm_id != firm_id:
            logger.warning(
                f"Refusing to classify email {email.id}: firm {email.firm_id} != {firm_id}"
            )
            return ClassificationResult.pending()

        if cases is None:
            cases = self.candidate_cases(firm_id, owner_user_id)
        cases = [c for c in cases if c.firm_id == firm_id and c.is_active]

        threaded = self._follow_thread(email, cases)
        if threaded is not None:
            return threaded

        scored = self.score_cases(email, cases)
        by_case = {str(s.case.id): s.confidence for s in scored}
        threshold = self.threshold_for(firm_id)

        if scored:
            top = max(s.confidence for s in scored)
            best = [s for s in scored if math.isclose(s.confidence, top, abs_tol=1e-9)]
            if top > threshold:
                if len(best) == 1:
                    winner = best[0]
                    return ClassificationResult.classified(
                        winner.case.id,
                        winner.confidence,
                        winner.match_type,
                        client_id=winner.case.client_id,
                        matched_reference=winner.matched_reference,
                        matched_address=winner.matched_address,
                        scores=by_case,
                    )
                client_id = _shared_client(s.case for s in best)
                if client_id is not None:
                    return ClassificationResult.client_inbox(client_id, scores=by_case)
                return ClassificationResult.uncertain(scores=by_case)

            contact_cases = [s.case for s in scored if s.matched_address]
            if len(contact_cases) >= 2:
                client_id = _shared_client(contact_cases)
                if client_id is not None:
                    return ClassificationResult.client_inbox(client_id, scores=by_case)

        if self._is_court_source(email):
            return ClassificationResult.court_unassigned()
        if scored:
            return ClassificationResult.uncertain(scores=by_case)
        return ClassificationResult.pending()


def _shared_client(cases) -> uuid.UUID | None:
    clients = {c.client_id for c in cases}
    if len(clients) == 1:
        return next(iter(clients))
    return None
