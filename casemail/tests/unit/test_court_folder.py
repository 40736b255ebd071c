import unittest

from classification_fixtures import ClassificationDb

from api.app.classification.court_folder import CourtFolderMatcher
from api.app.classification.reclassifier import EmailReclassifier
from api.app.classification.repository import SqlAlchemyClassificationRepository
from api.app.models import (
    CaseStatus,
    EmailClassificationState,
    EmailMatchType,
    UserRole,
)

COURT = EmailClassificationState.COURT_UNASSIGNED


class TestCourtFolderMatcher(unittest.TestCase):
    def setUp(self):
        self.db = ClassificationDb()
        self.firm = self.db.firm()
        self.owner = self.db.user(self.firm)
        self.repo = SqlAlchemyClassificationRepository(self.db.session)
        self.reclassifier = EmailReclassifier(self.repo)

    def tearDown(self):
        self.db.close()

    def test_reference_in_body_files_court_email(self):
        case = self.db.case(self.firm, references=["4521/2024"])
        email = self.db.email(
            self.firm,
            self.owner,
            sender="registratura@tribunal.ro",
            subject="Comunicare citatie",
            preview="Va comunicam alaturat citatia",
            body="Stimate domn, ...dosar nr. 4521 / 2024, termen 12 martie...",
            state=COURT,
        )

        result = self.reclassifier.on_case_reference_added(
            case.id, "4521/2024", self.firm.id
        )

        self.assertEqual(result.to_dict(), {"reclassified": 1, "errors": 0, "scanned": 1})
        stored = self.db.reload(email)
        self.assertEqual(stored.classification_state, EmailClassificationState.CLASSIFIED)
        self.assertEqual(stored.case_id, case.id)
        self.assertEqual(stored.classification_confidence, 1.0)
        self.assertEqual(stored.classified_by, "system:reference-match")

        links = self.db.links(email)
        self.assertEqual(len(links), 1)
        self.assertEqual(links[0].case_id, case.id)
        self.assertEqual(links[0].match_type, EmailMatchType.REFERENCE_NUMBER)
        self.assertEqual(links[0].confidence, 1.0)
        self.assertTrue(links[0].is_primary)

    def test_second_run_is_a_no_op(self):
        case = self.db.case(self.firm, references=["4521/2024"])
        email = self.db.email(
            self.firm, self.owner, body="dosar 4521/2024", state=COURT
        )

        first = self.reclassifier.on_case_reference_added(case.id, "4521/2024", self.firm.id)
        second = self.reclassifier.on_case_reference_added(case.id, "4521/2024", self.firm.id)

        self.assertEqual(first.reclassified, 1)
        self.assertEqual(second.reclassified, 0)
        self.assertEqual(second.errors, 0)
        self.assertEqual(len(self.db.links(email)), 1)

    def test_new_reference_matched_even_before_case_saved_it(self):
        case = self.db.case(self.firm, references=[])
        email = self.db.email(
            self.firm,
            self.owner,
            body="<html><body><table><tr><td>Dosar nr. 1234/3/2024</td></tr></table></body></html>",
            state=COURT,
        )
        result = self.reclassifier.on_case_reference_added(
            case.id, " 1234 - 3 - 2024 ", self.firm.id
        )
        self.assertEqual(result.reclassified, 1)
        self.assertEqual(self.db.reload(email).case_id, case.id)

    def test_only_court_unassigned_queue_is_scanned(self):
        case = self.db.case(self.firm, references=["77/2025"])
        pending = self.db.email(self.firm, self.owner, subject="dosar 77/2025")
        uncertain = self.db.email(
            self.firm,
            self.owner,
            subject="dosar 77/2025",
            state=EmailClassificationState.UNCERTAIN,
        )
        result = self.reclassifier.on_case_reference_added(case.id, "77/2025", self.firm.id)
        self.assertEqual(result.scanned, 0)
        self.assertEqual(self.db.reload(pending).classification_state, EmailClassificationState.PENDING)
        self.assertEqual(self.db.reload(uncertain).classification_state, EmailClassificationState.UNCERTAIN)

    def test_non_matching_mail_stays_queued(self):
        case = self.db.case(self.firm, references=["77/2025"])
        email = self.db.email(self.firm, self.owner, body="dosar 78/2025", state=COURT)
        result = self.reclassifier.on_case_reference_added(case.id, "77/2025", self.firm.id)
        self.assertEqual(result.to_dict(), {"reclassified": 0, "errors": 0, "scanned": 1})
        self.assertEqual(self.db.reload(email).classification_state, COURT)
        self.assertEqual(self.db.links(), [])

    def test_email_filed_manually_during_scan_is_kept(self):
        manual_case = self.db.case(self.firm)
        case = self.db.case(self.firm, references=["4521/2024"])
        email = self.db.email(self.firm, self.owner, body="dosar 4521/2024", state=COURT)

        class _ManualFilingRepository(SqlAlchemyClassificationRepository):
            def find_court_unassigned(self, firm_id, limit):
                emails = super().find_court_unassigned(firm_id, limit)
                for e in emails:
                    self.mark_classified(
                        e.id,
                        firm_id,
                        case_id=manual_case.id,
                        client_id=None,
                        confidence=1.0,
                        classified_by="user:manual",
                    )
                return emails

        repo = _ManualFilingRepository(self.db.session)
        result = EmailReclassifier(repo).on_case_reference_added(
            case.id, "4521/2024", self.firm.id
        )

        self.assertEqual(result.to_dict(), {"reclassified": 0, "errors": 0, "scanned": 1})
        stored = self.db.reload(email)
        self.assertEqual(stored.case_id, manual_case.id)
        self.assertEqual(stored.classified_by, "user:manual")
        self.assertEqual(self.db.links(email), [])

    def test_other_firm_queue_is_untouched(self):
        other_firm = self.db.firm("Other")
        other_owner = self.db.user(other_firm)
        case = self.db.case(self.firm, references=["4521/2024"])
        foreign = self.db.email(
            other_firm, other_owner, body="dosar 4521/2024", state=COURT
        )

        result = self.reclassifier.on_case_reference_added(case.id, "4521/2024", self.firm.id)

        self.assertEqual(result.scanned, 0)
        self.assertEqual(self.db.reload(foreign).classification_state, COURT)
        self.assertEqual(self.db.links(foreign), [])

    def test_batch_is_capped_newest_first(self):
        case = self.db.case(self.firm, references=["5/2025"])
        emails = [
            self.db.email(self.firm, self.owner, body="dosar 5/2025", state=COURT)
            for _ in range(3)
        ]
        matcher = CourtFolderMatcher(self.repo, batch_limit=2)
        profile = self.repo.get_case_profile(case.id, self.firm.id)

        result = matcher.run(profile, "5/2025")

        self.assertEqual(result.scanned, 2)
        self.assertEqual(result.reclassified, 2)
        # Oldest one is left for a later trigger
        self.assertEqual(self.db.reload(emails[0]).classification_state, COURT)
        self.assertEqual(
            self.db.reload(emails[2]).classification_state,
            EmailClassificationState.CLASSIFIED,
        )

    def test_partner_mail_is_marked_private(self):
        partner = self.db.user(self.firm, role=UserRole.PARTNER)
        case = self.db.case(self.firm, references=["5/2025"])
        email = self.db.email(self.firm, partner, body="dosar 5/2025", state=COURT)

        self.reclassifier.on_case_reference_added(case.id, "5/2025", self.firm.id)

        stored = self.db.reload(email)
        self.assertTrue(stored.is_private)
        self.assertEqual(stored.marked_private_by, partner.id)
        self.assertIsNotNone(stored.marked_private_at)

    def test_associate_mail_stays_shared(self):
        case = self.db.case(self.firm, references=["5/2025"])
        email = self.db.email(self.firm, self.owner, body="dosar 5/2025", state=COURT)
        self.reclassifier.on_case_reference_added(case.id, "5/2025", self.firm.id)
        self.assertFalse(self.db.reload(email).is_private)

    def test_inactive_or_missing_case(self):
        closed = self.db.case(self.firm, references=["5/2025"], status=CaseStatus.CLOSED)
        self.db.email(self.firm, self.owner, body="dosar 5/2025", state=COURT)
        with self.assertLogs("api.app.classification.reclassifier", level="WARNING"):
            result = self.reclassifier.on_case_reference_added(closed.id, "5/2025", self.firm.id)
        self.assertEqual(result.to_dict(), {"reclassified": 0, "errors": 0, "scanned": 0})

        other_firm = self.db.firm("Other")
        result = self.reclassifier.on_case_reference_added(closed.id, "5/2025", other_firm.id)
        self.assertEqual(result.scanned, 0)

    def test_blank_reference_on_case_without_references(self):
        case = self.db.case(self.firm)
        self.db.email(self.firm, self.owner, body="dosar 5/2025", state=COURT)
        result = self.reclassifier.on_case_reference_added(case.id, "  ", self.firm.id)
        self.assertEqual(result.scanned, 0)

    def test_match_email_returns_case_spelling(self):
        case = self.db.case(self.firm, references=["1234-3-2024"])
        email = self.db.email(self.firm, self.owner, preview="ref 1234/3/2024", state=COURT)
        matcher = CourtFolderMatcher(self.repo)
        view = self.repo.get_email(email.id, self.firm.id)
        profile = self.repo.get_case_profile(case.id, self.firm.id)
        self.assertEqual(matcher.match_email(view, profile.reference_numbers), "1234-3-2024")


if __name__ == "__main__":
    unittest.main()
