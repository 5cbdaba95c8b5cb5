"""Tests for start-link extraction and the deep-link codec."""

import base64
import json

import pytest

from gaterunner.errors import DeepLinkError, DeepLinkTooLongError
from gaterunner.links import (
    MAX_DEEP_LINK_LENGTH,
    decode_deep_link,
    encode_deep_link,
    extract_links,
    parse_start_link,
)
from gaterunner.models import TargetLink


class TestExtractLinks:
    """Finding start links in text and entities."""

    def test_plain_text(self):
        links = extract_links("grab it here https://t.me/FileBot?start=abc_123 now")
        assert links == [TargetLink("FileBot", "abc_123")]

    def test_all_hosts_and_schemes(self):
        text = (
            "http://t.me/A_bot?start=1 "
            "https://telegram.me/B_bot?start=2 "
            "https://telegram.dog/C_bot?start=3 "
            "https://www.t.me/D_bot?start=4"
        )
        assert [l.target_name for l in extract_links(text)] == ["A_bot", "B_bot", "C_bot", "D_bot"]

    def test_ignores_links_without_start(self):
        assert extract_links("https://t.me/SomeChannel and https://example.com/?start=x") == []

    def test_entity_urls_first_and_deduplicated(self):
        text = "https://t.me/TextBot?start=t1 https://t.me/HiddenBot?start=h1"
        links = extract_links(text, ["https://t.me/HiddenBot?start=h1"])
        assert [l.key for l in links] == ["HiddenBot:h1", "TextBot:t1"]

    def test_same_bot_different_tokens_kept(self):
        links = extract_links("https://t.me/Bot?start=a https://t.me/Bot?start=b https://t.me/Bot?start=a")
        assert [l.start_token for l in links] == ["a", "b"]

    def test_empty_input(self):
        assert extract_links(None) == []
        assert extract_links("") == []

    def test_parse_single(self):
        assert parse_start_link("https://t.me/X?start=y").url == "https://t.me/X?start=y"
        assert parse_start_link("not a link") is None
        assert parse_start_link(None) is None


class TestDeepLink:
    """Encoding targets into a /start parameter and back."""

    def test_roundtrip(self):
        targets = [TargetLink("ab", "1"), TargetLink("cd", "2")]
        payload, dropped = encode_deep_link(targets)
        assert dropped == 0
        assert len(payload) <= MAX_DEEP_LINK_LENGTH
        assert "=" not in payload
        assert decode_deep_link(payload) == targets

    def test_wire_format(self):
        payload, _ = encode_deep_link([TargetLink("Bot", "x")])
        raw = base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4))
        assert json.loads(raw) == [{"b": "Bot", "s": "x"}]

    def test_falls_back_to_first_target(self):
        targets = [TargetLink(f"SomeLongBotName{i}", f"token{i}") for i in range(4)]
        payload, dropped = encode_deep_link(targets)
        assert dropped == 3
        assert decode_deep_link(payload) == targets[:1]

    def test_single_target_too_long(self):
        with pytest.raises(DeepLinkTooLongError):
            encode_deep_link([TargetLink("B" * 40, "t" * 40)])

    def test_empty_targets(self):
        with pytest.raises(DeepLinkError):
            encode_deep_link([])

    def test_decode_accepts_padding(self):
        payload, _ = encode_deep_link([TargetLink("Bot", "xy")])
        padded = payload + "=" * (-len(payload) % 4)
        assert decode_deep_link(padded) == [TargetLink("Bot", "xy")]

    @pytest.mark.parametrize("payload", ["", "!!!", "bm90IGpzb24", "eyJiIjoiQm90In0", "W3siYiI6IkJvdCJ9XQ"])
    def test_decode_malformed(self, payload):
        with pytest.raises(DeepLinkError):
            decode_deep_link(payload)
