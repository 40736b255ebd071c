"""
Reclassification of unresolved email when case metadata changes.

Each trigger selects a bounded, firm-scoped candidate set, re-runs the scorer
(or a direct match path) per email and persists the outcome. Emails are
processed one at a time; a failure on one is logged and counted and the
batch carries on.
"""

from __future__ import annotations

import logging
import uuid
from typing import Iterable, Sequence

from ..config import settings
from ..models import EmailClassificationState, EmailMatchType
from .assignment import AssignmentError, CaseAssigner, ReclassificationError
from .contacts import build_match_predicate, normalize_domain, normalize_email
from .court_folder import CourtFolderMatcher
from .repository import ClassificationRepository
from .schemas import BatchResult, CaseProfile, ClassificationResult, EmailForClassification
from .scoring import ClassificationScorer

logger = logging.getLogger(__name__)

__all__ = [
    "EmailReclassifier",
    "ReclassificationError",
    "AssignmentError",
    "UNRESOLVED_STATES",
    "IGNORABLE_STATES",
]

# Contact/keyword triggers only ever touch these
UNRESOLVED_STATES = (
    EmailClassificationState.PENDING,
    EmailClassificationState.UNCERTAIN,
    EmailClassificationState.CLIENT_INBOX,
)
# Learned from a manual assignment
PATTERN_STATES = (
    EmailClassificationState.UNCERTAIN,
    EmailClassificationState.CLIENT_INBOX,
)
# Everything a private contact's mail can be in before it is ignored
IGNORABLE_STATES = tuple(
    s for s in EmailClassificationState if s != EmailClassificationState.IGNORED
)


class EmailReclassifier:
    def __init__(
        self,
        repository: ClassificationRepository,
        scorer: ClassificationScorer | None = None,
        court_matcher: CourtFolderMatcher | None = None,
        batch_limit: int | None = None,
        *,
        assigner: CaseAssigner | None = None,
    ):
        self.repository = repository
        self.scorer = scorer or ClassificationScorer(repository)
        self.batch_limit = batch_limit or settings.RECLASSIFY_BATCH_LIMIT
        self.assigner = assigner or CaseAssigner(repository)
        self.court_matcher = court_matcher or CourtFolderMatcher(
            repository, batch_limit=self.batch_limit, assigner=self.assigner
        )

    # ------------------------------------------------------------------
    # Triggers

    def on_case_metadata_changed(
        self,
        case_id: uuid.UUID,
        firm_id: uuid.UUID,
        actor_user_id: uuid.UUID | None = None,
        *,
        keywords_changed: bool = False,
        reference_numbers_changed: bool = False,
    ) -> BatchResult:
        """Rescan unresolved mail from the case's contacts after an edit."""
        if not (keywords_changed or reference_numbers_changed):
            logger.debug(f"Case {case_id}: no keyword/reference change, nothing to do")
            return BatchResult()

        case = self._active_case(case_id, firm_id, "case metadata changed")
        if case is None:
            return BatchResult()
        if not case.has_contacts:
            logger.info(f"Case {case_id} has no contact addresses; skipping rescan")
            return BatchResult()

        candidates = self.repository.find_contact_candidates(
            firm_id,
            UNRESOLVED_STATES,
            emails=case.contact_emails,
            domains=case.contact_domains,
            limit=self.batch_limit,
        )
        matcher = build_match_predicate(
            case.contact_emails, case.contact_domains, include_recipients=True
        )
        linked_by = (
            f"system:reclassify:{actor_user_id}" if actor_user_id else "system:reclassify"
        )
        return self._rescan(
            candidates,
            firm_id,
            linked_by,
            context=f"metadata change on case {case_id}",
            accept=matcher,
        )

    def on_contact_added(
        self,
        contact_email: str | None,
        contact_domains: Iterable[str] | None,
        case_id: uuid.UUID,
        firm_id: uuid.UUID,
        actor_user_id: uuid.UUID | None = None,
    ) -> BatchResult:
        """Pick up mail from a newly added (or re-addressed) case contact.

        The scorer decides first. If it cannot, an exact address match is
        filed to this case directly, unless another active case also lists
        that address.
        """
        address = normalize_email(contact_email)
        domains = [d for d in (normalize_domain(d) for d in contact_domains or []) if d]
        if not address and not domains:
            return BatchResult()

        case = self._active_case(case_id, firm_id, "contact added")
        if case is None:
            return BatchResult()

        candidates = self.repository.find_contact_candidates(
            firm_id,
            UNRESOLVED_STATES,
            emails=[address] if address else [],
            domains=domains,
            limit=self.batch_limit,
        )
        matcher = build_match_predicate(
            [address], domains, include_recipients=True
        )
        exact = build_match_predicate([address], [], include_recipients=True)

        cache: dict[uuid.UUID | None, list[CaseProfile]] = {}
        cases = self.scorer.candidate_cases(firm_id, None)
        if not self.scorer.weights.team_scoped:
            cache[None] = cases
        claimed_elsewhere = bool(address) and any(
            address in c.contact_emails for c in cases if c.id != case.id
        )
        linked_by = "system:contact-match"
        context = f"contact {address or domains} added to case {case_id}"

        result = BatchResult()
        for email in candidates:
            result.scanned += 1
            if not matcher(email):
                continue
            try:
                decision = self._classify(email, firm_id, cache)
                if decision.is_classified:
                    applied = self._assign_decision(
                        email, decision, linked_by, UNRESOLVED_STATES
                    )
                elif address and not claimed_elsewhere and exact(email):
                    applied = self.assigner.assign(
                        email,
                        case.id,
                        case.client_id,
                        confidence=settings.CONTACT_AUTO_ASSIGN_CONFIDENCE,
                        match_type=EmailMatchType.ACTOR,
                        linked_by=linked_by,
                        from_states=UNRESOLVED_STATES,
                    )
                else:
                    applied = self._apply_unresolved(
                        email, decision, linked_by, UNRESOLVED_STATES
                    )
                if not applied:
                    continue
                result.reclassified += 1
                logger.debug(f"Email {email.id} reclassified after {context}")
            except Exception as e:
                self._record_error(result, email, context, e)

        self._log_summary(context, result)
        return result

    def on_case_reference_added(
        self, case_id: uuid.UUID, reference_number: str, firm_id: uuid.UUID
    ) -> BatchResult:
        """File court-unassigned mail carrying the new reference number."""
        case = self._active_case(case_id, firm_id, "reference added")
        if case is None:
            return BatchResult()
        return self.court_matcher.run(case, reference_number)

    def on_contact_email_changed(
        self,
        old_email: str | None,
        new_email: str | None,
        firm_id: uuid.UUID,
        actor_user_id: uuid.UUID | None = None,
    ) -> BatchResult:
        addresses = [a for a in {normalize_email(old_email), normalize_email(new_email)} if a]
        if not addresses:
            return BatchResult()

        candidates = self.repository.find_contact_candidates(
            firm_id,
            UNRESOLVED_STATES,
            emails=addresses,
            limit=self.batch_limit,
        )
        matcher = build_match_predicate(addresses, [], include_recipients=True)
        linked_by = (
            f"system:reclassify:{actor_user_id}" if actor_user_id else "system:reclassify"
        )
        return self._rescan(
            candidates,
            firm_id,
            linked_by,
            context=f"contact email changed {old_email!r} -> {new_email!r}",
            accept=matcher,
        )

    def on_manual_assignment(
        self,
        email_id: uuid.UUID,
        case_id: uuid.UUID,
        user_id: uuid.UUID,
        firm_id: uuid.UUID,
    ) -> BatchResult:
        """Apply a user's manual filing to other unresolved mail from the same sender.

        The assigned email and the rest of its conversation are left alone.
        """
        case = self._active_case(case_id, firm_id, "manual assignment")
        if case is None:
            return BatchResult()

        source = self.repository.get_email(email_id, firm_id)
        if source is None or source.sender is None:
            logger.info(f"Manual assignment of {email_id}: no sender to learn from")
            return BatchResult()
        sender = source.sender.address

        candidates = self.repository.find_contact_candidates(
            firm_id,
            PATTERN_STATES,
            emails=[sender],
            limit=self.batch_limit,
            exclude_email_ids=[email_id],
            exclude_conversation_id=source.conversation_id,
        )
        linked_by = f"system:pattern-from-{user_id}"
        context = f"manual assignment of {email_id} to case {case_id}"

        result = BatchResult()
        for email in candidates:
            result.scanned += 1
            if email.sender is None or email.sender.address != sender:
                continue
            try:
                applied = self.assigner.assign(
                    email,
                    case.id,
                    case.client_id,
                    confidence=settings.PATTERN_ASSIGN_CONFIDENCE,
                    match_type=EmailMatchType.MANUAL,
                    linked_by=linked_by,
                    from_states=PATTERN_STATES,
                )
                if applied:
                    result.reclassified += 1
            except Exception as e:
                self._record_error(result, email, context, e)

        self._log_summary(context, result)
        return result

    def on_contact_marked_private(
        self, contact_email: str | None, user_id: uuid.UUID, firm_id: uuid.UUID
    ) -> BatchResult:
        """Soft-ignore all of a private contact's mail, whatever its state."""
        address = normalize_email(contact_email)
        if not address:
            return BatchResult()

        logger.info(f"Ignoring mail from private contact {address} (user {user_id})")
        try:
            count = self.repository.ignore_sender_emails(
                firm_id,
                address,
                IGNORABLE_STATES,
                ignored_by=f"user:{user_id}:private-contact",
            )
        except Exception as e:
            logger.error(f"Failed to ignore mail from private contact {address}: {e}")
            raise

        result = BatchResult(reclassified=count, scanned=count)
        self._log_summary(f"contact {address} marked private", result)
        return result

    # ------------------------------------------------------------------
    # Helpers

    def _active_case(
        self, case_id: uuid.UUID, firm_id: uuid.UUID, trigger: str
    ) -> CaseProfile | None:
        case = self.repository.get_case_profile(case_id, firm_id)
        if case is None:
            logger.warning(f"Case {case_id} not found in firm {firm_id} ({trigger})")
            return None
        if not case.is_active:
            logger.warning(
                f"Case {case_id} is {case.status.value}; skipping reclassification ({trigger})"
            )
            return None
        return case

    def _classify(
        self,
        email: EmailForClassification,
        firm_id: uuid.UUID,
        cache: dict[uuid.UUID | None, list[CaseProfile]],
    ) -> ClassificationResult:
        # Case profiles are loaded once per trigger (per owner when team scoped)
        key = email.user_id if self.scorer.weights.team_scoped else None
        if key not in cache:
            cache[key] = self.scorer.candidate_cases(firm_id, email.user_id)
        return self.scorer.classify(email, firm_id, email.user_id, cases=cache[key])

    def _assign_decision(
        self,
        email: EmailForClassification,
        decision: ClassificationResult,
        linked_by: str,
        from_states: Sequence[EmailClassificationState],
    ) -> bool:
        if decision.case_id is None or decision.match_type is None:
            raise ReclassificationError(f"Incomplete decision for email {email.id}")
        return self.assigner.assign(
            email,
            decision.case_id,
            decision.client_id,
            confidence=decision.confidence if decision.confidence is not None else 1.0,
            match_type=decision.match_type,
            linked_by=linked_by,
            from_states=from_states,
        )

    def _apply_unresolved(
        self,
        email: EmailForClassification,
        decision: ClassificationResult,
        linked_by: str,
        from_states: Sequence[EmailClassificationState],
    ) -> bool:
        """Persist a non-case outcome; False when nothing changed."""
        if (
            decision.state == email.classification_state
            and decision.client_id == email.client_id
        ):
            return False
        return self.repository.update_state(
            email.id,
            email.firm_id,
            decision.state,
            client_id=decision.client_id,
            classified_by=linked_by,
            from_states=from_states,
        )

    def _rescan(
        self,
        candidates: list[EmailForClassification],
        firm_id: uuid.UUID,
        linked_by: str,
        *,
        context: str,
        accept,
        states: Sequence[EmailClassificationState] = UNRESOLVED_STATES,
    ) -> BatchResult:
        result = BatchResult()
        cache: dict[uuid.UUID | None, list[CaseProfile]] = {}
        logger.info(f"Reclassifying up to {len(candidates)} emails after {context}")

        for email in candidates:
            result.scanned += 1
            if not accept(email):
                continue
            try:
                decision = self._classify(email, firm_id, cache)
                if decision.is_classified:
                    applied = self._assign_decision(email, decision, linked_by, states)
                else:
                    applied = self._apply_unresolved(email, decision, linked_by, states)
                if not applied:
                    continue
                result.reclassified += 1
                logger.debug(f"Email {email.id} -> {decision.state.value} after {context}")
            except Exception as e:
                self._record_error(result, email, context, e)

        self._log_summary(context, result)
        return result

    def _record_error(
        self,
        result: BatchResult,
        email: EmailForClassification,
        context: str,
        error: Exception,
    ) -> None:
        result.errors += 1
        logger.error(f"Failed to reclassify email {email.id} ({context}): {error}")

    def _log_summary(self, context: str, result: BatchResult) -> None:
        logger.info(
            f"Reclassification after {context}: {result.reclassified} reclassified, "
            f"{result.errors} errors, {result.scanned} scanned"
        )
