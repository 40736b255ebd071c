import os
import sys
import unittest
import uuid


# Provide minimal env for Settings validation during import.
os.environ.setdefault("DATABASE_URL", "sqlite://")

# Ensure `api` package is importable when running from repo root.
TEST_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if TEST_ROOT not in sys.path:
    sys.path.insert(0, TEST_ROOT)


from api.app.classification.schemas import (  # noqa: E402
    CaseProfile,
    EmailAddress,
    EmailForClassification,
    ScoringWeights,
)
from api.app.classification.scoring import ClassificationScorer  # noqa: E402
from api.app.models import (  # noqa: E402
    CaseStatus,
    EmailClassificationState,
    EmailMatchType,
)

FIRM = uuid.uuid4()
OTHER_FIRM = uuid.uuid4()


class StubRepository:
    """Just the read methods the scorer uses."""

    def __init__(self, cases=(), threshold=None, threads=None, court=((), ())):
        self.cases = list(cases)
        self.threshold = threshold
        self.threads = threads or {}
        self.court = court
        self.member_requests: list = []

    def load_case_profiles(self, firm_id, member_user_id=None):
        self.member_requests.append(member_user_id)
        return [c for c in self.cases if c.firm_id == firm_id]

    def get_firm_threshold(self, firm_id):
        return self.threshold

    def find_thread_assignment(self, firm_id, conversation_id, exclude_email_id=None):
        return self.threads.get(conversation_id)

    def load_court_source_contacts(self, firm_id):
        return self.court


def _case(**kwargs) -> CaseProfile:
    kwargs.setdefault("id", uuid.uuid4())
    kwargs.setdefault("firm_id", FIRM)
    return CaseProfile.build(**kwargs)


def _email(
    sender=None, subject=None, preview=None, body=None, to=(), **kwargs
) -> EmailForClassification:
    firm_id = kwargs.pop("firm_id", FIRM)
    return EmailForClassification(
        id=uuid.uuid4(),
        firm_id=firm_id,
        user_id=uuid.uuid4(),
        sender=EmailAddress(address=sender) if sender else None,
        to=tuple(EmailAddress(address=a) for a in to),
        subject=subject,
        body_preview=preview,
        body_content=body,
        **kwargs,
    )


class TestClassificationScorer(unittest.TestCase):
    def _scorer(self, repo, **weights) -> ClassificationScorer:
        return ClassificationScorer(repo, ScoringWeights(**weights))

    def test_sole_contact_classifies_below_full_confidence(self):
        case = _case(contact_emails=["counsel@opposing.ro"])
        result = self._scorer(StubRepository([case])).classify(
            _email(sender="Counsel@Opposing.ro", subject="Re: hearing"), FIRM
        )
        self.assertEqual(result.state, EmailClassificationState.CLASSIFIED)
        self.assertEqual(result.case_id, case.id)
        self.assertEqual(result.match_type, EmailMatchType.ACTOR)
        self.assertGreaterEqual(result.confidence, 0.6)
        self.assertLess(result.confidence, 1.0)

    def test_contact_plus_reference_is_full_confidence(self):
        case = _case(
            contact_emails=["counsel@opposing.ro"], reference_numbers=["4521/2024"]
        )
        result = self._scorer(StubRepository([case])).classify(
            _email(sender="counsel@opposing.ro", subject="Dosar 4521 / 2024"), FIRM
        )
        self.assertEqual(result.state, EmailClassificationState.CLASSIFIED)
        self.assertEqual(result.confidence, 1.0)
        self.assertEqual(result.match_type, EmailMatchType.REFERENCE_NUMBER)
        self.assertEqual(result.matched_reference, "4521/2024")

    def test_reference_alone_exceeds_threshold(self):
        case = _case(reference_numbers=["1234/3/2024"])
        result = self._scorer(StubRepository([case])).classify(
            _email(sender="unknown@x.ro", body="<p>Dosar nr. 1234-3-2024</p><p>1234/3/2024</p>"),
            FIRM,
        )
        self.assertEqual(result.state, EmailClassificationState.CLASSIFIED)
        self.assertEqual(result.case_id, case.id)

    def test_shared_client_tie_goes_to_client_inbox(self):
        client = uuid.uuid4()
        a = _case(client_id=client, contact_emails=["ceo@client.ro"])
        b = _case(client_id=client, contact_emails=["ceo@client.ro"])
        result = self._scorer(StubRepository([a, b])).classify(
            _email(sender="ceo@client.ro"), FIRM
        )
        self.assertEqual(result.state, EmailClassificationState.CLIENT_INBOX)
        self.assertEqual(result.client_id, client)

    def test_tie_above_threshold_with_shared_client(self):
        client = uuid.uuid4()
        a = _case(client_id=client, contact_emails=["ceo@client.ro"], keywords=["lease"])
        b = _case(client_id=client, contact_emails=["ceo@client.ro"], keywords=["lease"])
        result = self._scorer(StubRepository([a, b])).classify(
            _email(sender="ceo@client.ro", subject="Lease renewal"), FIRM
        )
        self.assertEqual(result.scores, {str(a.id): 0.8, str(b.id): 0.8})
        self.assertEqual(result.state, EmailClassificationState.CLIENT_INBOX)

    def test_tie_without_shared_client_is_uncertain(self):
        a = _case(client_id=uuid.uuid4(), contact_emails=["x@shared.ro"], keywords=["lease"])
        b = _case(client_id=uuid.uuid4(), contact_emails=["x@shared.ro"], keywords=["lease"])
        result = self._scorer(StubRepository([a, b])).classify(
            _email(sender="x@shared.ro", subject="lease"), FIRM
        )
        self.assertEqual(result.state, EmailClassificationState.UNCERTAIN)
        self.assertIsNone(result.case_id)

    def test_cases_tied_at_full_confidence_are_not_picked(self):
        # Raw 1.9 against 1.0: both report confidence 1.0
        a = _case(contact_emails=["x@shared.ro"], reference_numbers=["1/2024"])
        b = _case(reference_numbers=["1/2024"])
        result = self._scorer(StubRepository([a, b])).classify(
            _email(sender="x@shared.ro", subject="1/2024"), FIRM
        )
        self.assertEqual(result.state, EmailClassificationState.UNCERTAIN)
        self.assertIsNone(result.case_id)
        self.assertEqual(result.scores, {str(a.id): 1.0, str(b.id): 1.0})

    def test_tied_full_confidence_cases_of_one_client_go_to_client_inbox(self):
        client = uuid.uuid4()
        a = _case(
            client_id=client,
            contact_emails=["x@client.ro"],
            reference_numbers=["1/2024"],
        )
        b = _case(client_id=client, reference_numbers=["1/2024"])
        result = self._scorer(StubRepository([a, b])).classify(
            _email(sender="x@client.ro", subject="1/2024"), FIRM
        )
        self.assertEqual(result.state, EmailClassificationState.CLIENT_INBOX)
        self.assertEqual(result.client_id, client)

    def test_sole_contact_confidence_is_rounded(self):
        case = _case(contact_emails=["a@b.ro"])
        result = self._scorer(StubRepository([case])).classify(
            _email(sender="a@b.ro"), FIRM
        )
        self.assertEqual(result.confidence, 0.9)
        self.assertEqual(result.scores, {str(case.id): 0.9})

    def test_keywords_only_is_uncertain_and_capped(self):
        case = _case(keywords=["lease", "renewal", "tenant"])
        scorer = self._scorer(StubRepository([case]))
        result = scorer.classify(
            _email(subject="Lease renewal", preview="tenant notice"), FIRM
        )
        self.assertEqual(result.state, EmailClassificationState.UNCERTAIN)
        self.assertEqual(result.scores, {str(case.id): 0.4})

    def test_keywords_ignore_full_body(self):
        case = _case(keywords=["lease"])
        result = self._scorer(StubRepository([case])).classify(
            _email(subject="Hello", body="the lease is attached"), FIRM
        )
        self.assertEqual(result.state, EmailClassificationState.PENDING)

    def test_no_signal_is_pending(self):
        case = _case(contact_emails=["a@b.ro"], keywords=["lease"])
        result = self._scorer(StubRepository([case])).classify(_email(), FIRM)
        self.assertEqual(result.state, EmailClassificationState.PENDING)

    def test_firm_threshold_override(self):
        case = _case(contact_emails=["a@b.ro"])
        result = self._scorer(StubRepository([case], threshold=0.95)).classify(
            _email(sender="a@b.ro"), FIRM
        )
        self.assertEqual(result.state, EmailClassificationState.UNCERTAIN)

    def test_confidence_must_be_strictly_above_threshold(self):
        case = _case(contact_emails=["a@b.ro"])
        result = self._scorer(StubRepository([case]), threshold=0.9).classify(
            _email(sender="a@b.ro"), FIRM
        )
        self.assertEqual(result.state, EmailClassificationState.UNCERTAIN)

    def test_inactive_and_foreign_cases_are_ignored(self):
        closed = _case(contact_emails=["a@b.ro"], status=CaseStatus.CLOSED)
        foreign = _case(contact_emails=["a@b.ro"], firm_id=OTHER_FIRM)
        result = self._scorer(StubRepository()).classify(
            _email(sender="a@b.ro"), FIRM, cases=[closed, foreign]
        )
        self.assertEqual(result.state, EmailClassificationState.PENDING)

    def test_email_from_other_firm_is_never_classified(self):
        case = _case(contact_emails=["a@b.ro"])
        result = self._scorer(StubRepository([case])).classify(
            _email(sender="a@b.ro", firm_id=OTHER_FIRM), FIRM
        )
        self.assertEqual(result.state, EmailClassificationState.PENDING)

    def test_sent_mail_matches_recipients(self):
        case = _case(contact_emails=["client@acme.ro"])
        result = self._scorer(StubRepository([case])).classify(
            _email(sender="partner@firm.ro", to=["client@acme.ro"], is_sent=True),
            FIRM,
        )
        self.assertEqual(result.state, EmailClassificationState.CLASSIFIED)
        self.assertEqual(result.matched_address, "client@acme.ro")

    def test_thread_continuity(self):
        case = _case(keywords=["unrelated"])
        repo = StubRepository([case], threads={"conv-1": case.id})
        result = self._scorer(repo).classify(
            _email(sender="new@person.ro", conversation_id="conv-1"), FIRM
        )
        self.assertEqual(result.state, EmailClassificationState.CLASSIFIED)
        self.assertEqual(result.match_type, EmailMatchType.THREAD_CONTINUITY)
        self.assertEqual(result.confidence, 1.0)

    def test_thread_to_inactive_case_is_not_followed(self):
        closed = _case(status=CaseStatus.CLOSED)
        repo = StubRepository([closed], threads={"conv-1": closed.id})
        result = self._scorer(repo).classify(
            _email(sender="new@person.ro", conversation_id="conv-1"), FIRM
        )
        self.assertEqual(result.state, EmailClassificationState.PENDING)

    def test_court_source_without_case_match(self):
        case = _case(reference_numbers=["1/2024"])
        repo = StubRepository([case], court=([], ["just.ro"]))
        result = self._scorer(repo).classify(
            _email(sender="registratura@just.ro", subject="Citatie dosar 99/2025"),
            FIRM,
        )
        self.assertEqual(result.state, EmailClassificationState.COURT_UNASSIGNED)

    def test_team_scoping_passes_owner(self):
        repo = StubRepository([])
        owner = uuid.uuid4()
        self._scorer(repo, team_scoped=True).classify(_email(), FIRM, owner)
        self._scorer(repo).classify(_email(), FIRM, owner)
        self.assertEqual(repo.member_requests, [owner, None])

    def test_malformed_fields_do_not_raise(self):
        case = _case(contact_emails=["a@b.ro"], keywords=["x"], reference_numbers=["1/2024"])
        email = _email(subject=None, preview=None, body="<html><body></body></html>")
        result = self._scorer(StubRepository([case])).classify(email, FIRM)
        self.assertEqual(result.state, EmailClassificationState.PENDING)


if __name__ == "__main__":
    unittest.main()
