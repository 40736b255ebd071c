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


from api.app.classification.contacts import build_match_predicate  # noqa: E402
from api.app.classification.schemas import (  # noqa: E402
    EmailAddress,
    EmailForClassification,
    parse_addresses,
)


def _message(sender=None, to=(), cc=(), is_sent=False) -> EmailForClassification:
    return EmailForClassification(
        id=uuid.uuid4(),
        firm_id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        sender=EmailAddress(address=sender) if sender else None,
        to=tuple(EmailAddress(address=a) for a in to),
        cc=tuple(EmailAddress(address=a) for a in cc),
        is_sent=is_sent,
    )


class TestContactMatcher(unittest.TestCase):
    def test_sender_email_match_is_case_insensitive_and_trimmed(self):
        matcher = build_match_predicate(["  Ana.Pop@Client.RO "], [])
        self.assertTrue(matcher(_message(sender="ana.pop@client.ro")))
        self.assertEqual(
            matcher.match(_message(sender="ANA.POP@client.ro")), "ana.pop@client.ro"
        )

    def test_sender_domain_match_with_or_without_at(self):
        for domain in ("client.ro", "@Client.ro"):
            matcher = build_match_predicate([], [domain])
            self.assertTrue(matcher(_message(sender="someone@client.ro")), domain)
            self.assertFalse(matcher(_message(sender="someone@notclient.ro")), domain)

    def test_subdomain_is_not_a_domain_match(self):
        matcher = build_match_predicate([], ["client.ro"])
        self.assertFalse(matcher(_message(sender="x@mail.client.ro")))

    def test_recipients_only_for_sent_mail(self):
        matcher = build_match_predicate(["judge@court.ro"], ["client.ro"])
        received = _message(sender="partner@firm.ro", to=["judge@court.ro"])
        sent = _message(
            sender="partner@firm.ro", cc=["someone@client.ro"], is_sent=True
        )
        self.assertFalse(matcher(received))
        self.assertEqual(matcher.match(sent), "someone@client.ro")

    def test_include_recipients_flag(self):
        matcher = build_match_predicate(
            ["judge@court.ro"], [], include_recipients=True
        )
        self.assertTrue(matcher(_message(sender="a@b.ro", cc=["judge@court.ro"])))

    def test_missing_fields_contribute_nothing(self):
        matcher = build_match_predicate(["a@b.ro"], ["b.ro"])
        self.assertFalse(matcher(_message()))
        self.assertFalse(build_match_predicate([], [])(_message(sender="a@b.ro")))
        self.assertFalse(build_match_predicate([None, ""], [None])(_message(sender="a@b.ro")))

    def test_matcher_is_reusable(self):
        matcher = build_match_predicate(["a@b.ro"], [])
        messages = [_message(sender="a@b.ro"), _message(sender="c@d.ro")] * 3
        self.assertEqual([matcher(m) for m in messages], [True, False] * 3)


class TestParseAddresses(unittest.TestCase):
    def test_accepts_known_shapes_and_skips_garbage(self):
        raw = [
            {"name": "Ana", "address": " Ana@Client.ro "},
            {"emailAddress": {"name": "Court", "address": "registry@court.ro"}},
            "<bare@example.ro>",
            {"name": "No address"},
            {"address": "not-an-address"},
            42,
            None,
        ]
        parsed = parse_addresses(raw)
        self.assertEqual(
            [a.address for a in parsed],
            ["ana@client.ro", "registry@court.ro", "bare@example.ro"],
        )
        self.assertEqual(parsed[0].name, "Ana")
        self.assertEqual(parsed[0].domain, "client.ro")

    def test_empty_and_scalar(self):
        self.assertEqual(parse_addresses(None), ())
        self.assertEqual(parse_addresses([]), ())
        self.assertEqual(
            [a.address for a in parse_addresses("solo@example.ro")],
            ["solo@example.ro"],
        )


if __name__ == "__main__":
    unittest.main()
