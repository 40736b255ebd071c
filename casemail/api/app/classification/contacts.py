"""Sender/recipient matching against a case's known contacts.

Query-level pre-filtering happens in the repository; the matcher here does
the precise in-memory confirmation on validated addresses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .schemas import EmailAddress, EmailForClassification


def normalize_email(value: str | None) -> str:
    if not value:
        return ""
    return value.strip().strip("<>").strip().lower()


def normalize_domain(value: str | None) -> str:
    if not value:
        return ""
    cleaned = value.strip().lower()
    if "@" in cleaned:
        cleaned = cleaned.rsplit("@", 1)[-1]
    return cleaned.strip(".")


def _iter_nonempty(values: Iterable[str | None], normalizer) -> Iterable[str]:
    for v in values or ():
        n = normalizer(v)
        if n:
            yield n


@dataclass(frozen=True)
class ContactMatcher:
    """Reusable predicate: does a message involve one of these contacts?"""

    emails: frozenset[str]
    domains: frozenset[str]
    include_recipients: bool = False

    @classmethod
    def from_contacts(
        cls,
        known_emails: Iterable[str | None],
        known_domains: Iterable[str | None],
        *,
        include_recipients: bool = False,
    ) -> "ContactMatcher":
        return cls(
            emails=frozenset(_iter_nonempty(known_emails, normalize_email)),
            domains=frozenset(_iter_nonempty(known_domains, normalize_domain)),
            include_recipients=include_recipients,
        )

    @property
    def is_empty(self) -> bool:
        return not self.emails and not self.domains

    def match_address(self, address: EmailAddress | str | None) -> str | None:
        if address is None:
            return None
        raw = address.address if isinstance(address, EmailAddress) else address
        addr = normalize_email(raw)
        if not addr:
            return None
        if addr in self.emails:
            return addr
        if "@" in addr and addr.rsplit("@", 1)[-1] in self.domains:
            return addr
        return None

    def match(self, message: EmailForClassification) -> str | None:
        """Return the first matching address on the message, if any."""
        if self.is_empty:
            return None
        hit = self.match_address(message.sender)
        if hit:
            return hit
        if message.is_sent or self.include_recipients:
            for recipient in message.recipients:
                hit = self.match_address(recipient)
                if hit:
                    return hit
        return None

    def __call__(self, message: EmailForClassification) -> bool:
        return self.match(message) is not None


def build_match_predicate(
    known_emails: Iterable[str | None],
    known_domains: Iterable[str | None],
    *,
    include_recipients: bool = False,
) -> ContactMatcher:
    return ContactMatcher.from_contacts(
        known_emails, known_domains, include_recipients=include_recipients
    )
