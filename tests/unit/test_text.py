"""Unit tests for content sanitization and linkification."""

import pytest

from chatserver.text import linkify, sanitize_input


@pytest.mark.unit
class TestSanitizeInput:
    def test_strips_angle_brackets(self) -> None:
        assert sanitize_input("<script>alert(1)</script>") == "scriptalert(1)/script"

    def test_trims_whitespace(self) -> None:
        assert sanitize_input("   hello  ") == "hello"

    def test_trims_after_stripping(self) -> None:
        """Brackets removed first, so the leftover whitespace is trimmed too."""
        assert sanitize_input("< hi >") == "hi"

    @pytest.mark.parametrize("value", [None, 42, ["a"], {"a": 1}])
    def test_non_string_is_empty(self, value: object) -> None:
        assert sanitize_input(value) == ""


@pytest.mark.unit
class TestLinkify:
    def test_wraps_http_url(self) -> None:
        assert linkify("see http://x.com now") == (
            'see <a href="http://x.com" target="_blank" '
            'rel="noopener noreferrer">http://x.com</a> now'
        )

    def test_wraps_multiple_urls(self) -> None:
        result = linkify("https://a.org and http://b.net/path?q=1")
        assert result.count("<a href=") == 2
        assert 'href="http://b.net/path?q=1"' in result

    def test_plain_text_untouched(self) -> None:
        assert linkify("no links here, ftp://nope") == "no links here, ftp://nope"


@pytest.mark.unit
def test_sanitize_then_linkify() -> None:
    """Brackets typed by the user never survive, but generated anchors do."""
    result = linkify(sanitize_input("  <b>hi</b> http://x.com "))

    assert result.startswith("bhi/b ")
    assert '<a href="http://x.com"' in result
