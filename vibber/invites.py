"""Personal invite links.

An invite link is the event URL with a single ``invite`` query parameter that
carries a display name. It pre-fills the guest join prompt and nothing more:
it holds no secret and grants nothing, so the server validates a join that
started from one exactly like any other.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import NamedTuple
from urllib.parse import parse_qs, quote, urlsplit, urlunsplit

INVITE_PARAM = "invite"


class InviteLink(NamedTuple):
    name: str
    url: str


def encode_invite(base_url: str, name: str) -> str:
    """Return ``base_url`` with the trimmed ``name`` as the invite parameter.

    Existing query parameters and fragments on ``base_url`` are preserved;
    an existing ``invite`` parameter is replaced.
    """
    parts = urlsplit(base_url)
    kept = [
        pair
        for pair in parts.query.split("&")
        if pair and pair.split("=", 1)[0] != INVITE_PARAM
    ]
    kept.append(f"{INVITE_PARAM}={quote(name.strip(), safe='')}")
    return urlunsplit(parts._replace(query="&".join(kept)))


def decode_invite(url: str) -> str:
    """Return the invite name carried by ``url``, or ``""`` when absent."""
    query = parse_qs(urlsplit(url or "").query, keep_blank_values=True)
    values = query.get(INVITE_PARAM)
    if not values:
        return ""
    return values[0]


def split_names(block: str) -> list[str]:
    """Split a pasted guest list into trimmed names, skipping blank lines."""
    return [line.strip() for line in (block or "").splitlines() if line.strip()]


def encode_bulk(base_url: str, names: str | Iterable[str]) -> list[InviteLink]:
    """Generate one invite link per name, in input order.

    ``names`` may be a newline-separated block or an iterable of names.
    """
    if isinstance(names, str):
        cleaned = split_names(names)
    else:
        cleaned = [name.strip() for name in names if name and name.strip()]
    return [InviteLink(name, encode_invite(base_url, name)) for name in cleaned]


def format_bulk(links: Iterable[InviteLink]) -> str:
    """Render links as ``name: url`` lines ready for copying."""
    return "\n".join(f"{link.name}: {link.url}" for link in links)
