from __future__ import annotations

from vibber.invites import (
    InviteLink,
    decode_invite,
    encode_bulk,
    encode_invite,
    format_bulk,
    split_names,
)

BASE = "https://vibber.example/events/abc"


def test_round_trip_preserves_name():
    url = encode_invite(BASE, "Jonas Gripsrud")
    assert url == f"{BASE}?invite=Jonas%20Gripsrud"
    assert decode_invite(url) == "Jonas Gripsrud"


def test_encode_trims_and_escapes_reserved_characters():
    url = encode_invite(BASE, "  Ana & Bo?  ")
    assert "Ana%20%26%20Bo%3F" in url
    assert decode_invite(url) == "Ana & Bo?"


def test_non_ascii_names_survive():
    assert decode_invite(encode_invite(BASE, "Åse Østby")) == "Åse Østby"


def test_existing_query_is_kept_and_invite_replaced():
    url = encode_invite(f"{BASE}?ref=mail&invite=Old#top", "New")
    assert "ref=mail" in url
    assert url.endswith("#top")
    assert decode_invite(url) == "New"


def test_decode_without_param_returns_empty():
    assert decode_invite(BASE) == ""
    assert decode_invite("") == ""


def test_split_names_skips_blank_lines():
    assert split_names("Ann\n\n  Bob  \n   \nCid\n") == ["Ann", "Bob", "Cid"]


def test_bulk_preserves_input_order():
    links = encode_bulk(BASE, "Zoe\nAnn\nMo")
    assert [link.name for link in links] == ["Zoe", "Ann", "Mo"]
    assert [decode_invite(link.url) for link in links] == ["Zoe", "Ann", "Mo"]


def test_bulk_accepts_iterables_and_formats_lines():
    links = encode_bulk(BASE, ["Ann", "", "  "])
    assert links == [InviteLink("Ann", f"{BASE}?invite=Ann")]
    assert format_bulk(links) == f"Ann: {BASE}?invite=Ann"
