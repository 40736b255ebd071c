from __future__ import annotations

import html as html_lib
import re

from bs4 import BeautifulSoup


_HTML_HINT_RE = re.compile(r"<\s*(html|body|div|p|br|span|table|td|font)\b", re.I)


def looks_like_html(value: str | None) -> bool:
    return bool(value) and bool(_HTML_HINT_RE.search(value or ""))


def html_to_text(html_body: str | None) -> str:
    if not html_body:
        return ""
    decoded = html_lib.unescape(html_body)
    soup = BeautifulSoup(decoded, "html.parser")

    # Remove non-content. Quoted blocks stay: court numbers often only appear
    # in the forwarded original.
    for tag in soup.find_all(["script", "style", "head", "title", "meta", "link"]):
        tag.decompose()

    text = soup.get_text(" ")
    text = text.replace("\xa0", " ")
    text = re.sub(r"[^\S\n]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def body_text(body_content: str | None) -> str:
    """Plain text of a stored body, which may be HTML or text."""
    if not body_content:
        return ""
    if looks_like_html(body_content):
        return html_to_text(body_content)
    return body_content


def searchable_text(
    subject: str | None,
    body_preview: str | None,
    body_content: str | None = None,
) -> str:
    """Subject, preview and (optionally) full body joined for scanning."""
    parts = [subject or "", body_preview or "", body_text(body_content)]
    return "\n".join(p for p in parts if p)
