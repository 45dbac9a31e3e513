"""
Tests for the text / markup / anchor / id / date helpers in normalizers.
"""
from bs4 import BeautifulSoup

from normalizers import (
    content_id,
    extract_markup,
    extract_text,
    find_date,
    first_sentence,
    markup_to_plain_formatting,
    parse_month_heading,
    parse_week_heading,
    plain_formatting_to_markup,
    resolve_anchor,
    slugify,
    slugify_heading,
    split_title,
    strip_status_prefix,
    synthetic_date,
)

PAGE = "https://learn.microsoft.com/en-us/entra/fundamentals/whats-new"


def _first(html, name):
    return BeautifulSoup(html, "html.parser").find(name)


def test_extract_text_none_and_whitespace():
    """None gives an empty string; whitespace runs collapse to one space."""
    assert extract_text(None) == ""
    p = _first("<p>  Hello \n\t <b>big</b>   world  </p>", "p")
    assert extract_text(p) == "Hello big world"


def test_extract_text_br_and_scripts():
    """<br> separates words and script text is never visible text."""
    p = _first("<p>Type: X<br>Service category: Y<script>alert(1)</script></p>", "p")
    assert extract_text(p) == "Type: X Service category: Y"


def test_extract_markup_strips_presentation_and_absolutizes_links():
    p = _first(
        '<p class="x" data-foo="1">Hello <a href="/a" aria-label="y" role="link">link</a>'
        "<script>bad()</script></p>",
        "p",
    )
    out = extract_markup(p, "https://learn.microsoft.com/en-us/page")
    assert out == 'Hello <a href="https://learn.microsoft.com/a">link</a>'


def test_extract_markup_is_idempotent():
    """Normalized markup passed through again comes back unchanged."""
    p = _first(
        '<div id="d"><p style="color:red">One <strong class="s">two</strong></p>'
        '<ul><li data-x="1">three <code>four</code></li></ul></div>',
        "div",
    )
    once = extract_markup(p, PAGE)
    assert extract_markup(once, PAGE) == once
    assert "class=" not in once and "style=" not in once and "data-x" not in once


def test_markup_to_plain_formatting():
    html = (
        '<p>Use <strong>bold</strong>, <em>it</em>, <code>x=1</code> and '
        '<a href="https://e.com/a">link</a><br>next <span>line</span></p>'
    )
    assert markup_to_plain_formatting(html) == "Use **bold**, *it*, `x=1` and [link](https://e.com/a)\nnext line"
    assert markup_to_plain_formatting("") == ""


def test_plain_formatting_to_markup_escapes_first():
    text = "**bold** and [link](https://e.com/a)\n<b>raw</b>"
    assert plain_formatting_to_markup(text) == (
        '<strong>bold</strong> and <a href="https://e.com/a">link</a><br>&lt;b&gt;raw&lt;/b&gt;'
    )


def test_resolve_anchor_prefers_id():
    h = _first('<h3 id="abc">Some <a href="#other" aria-hidden="true"></a>heading</h3>', "h3")
    assert resolve_anchor(h, PAGE + "#old") == PAGE + "#abc"


def test_resolve_anchor_decorative_link():
    h = _first('<h3>Some heading<a href="#custom-anchor" aria-hidden="true"></a></h3>', "h3")
    assert resolve_anchor(h, PAGE) == PAGE + "#custom-anchor"

    h = _first('<h3>Some heading <a class="anchor-link" href="#by-class">link</a></h3>', "h3")
    assert resolve_anchor(h, PAGE) == PAGE + "#by-class"


def test_resolve_anchor_ignores_content_links_and_uses_slug():
    """A real in-heading link is not an anchor; the text slug is used instead."""
    h = _first('<h3>Passkeys — now GA! <a href="#elsewhere">read the announcement</a></h3>', "h3")
    assert resolve_anchor(h, PAGE) == PAGE + "#passkeys----now-ga-read-the-announcement"


def test_resolve_anchor_empty():
    assert resolve_anchor(None, PAGE) is None
    assert resolve_anchor(_first("<h3>!!!</h3>", "h3"), PAGE) is None


def test_slugify_heading():
    assert slugify_heading("Week of June 23, 2025") == "week-of-june-23-2025"
    assert slugify_heading("A — B") == "a----b"
    assert slugify_heading("  -Leading and trailing-  ") == "leading-and-trailing"


def test_slugify():
    assert slugify("Intune") == "intune"
    assert slugify("Plan for change: Legacy MFA!") == "plan-for-change-legacy-mfa"
    assert slugify("!!!") == "unnamed"
    assert len(slugify("x" * 80)) == 50


def test_content_id_is_deterministic():
    a = content_id("Title", "Sub", "Body")
    assert a == content_id("Title", "Sub", "Body")
    assert isinstance(a, int)
    assert 0 <= a < 2 ** 32


def test_content_id_ignores_case_and_whitespace():
    assert content_id("Hello World", "Sub", "Body text") == content_id("hello  world", "SUB", "body\ntext")
    assert content_id("Hello World", "", "Body") != content_id("Hello World", "", "Other body")


def test_split_title():
    assert split_title("Feature: more detail: here") == ("Feature", "more detail: here")
    assert split_title("Feature - the detail") == ("Feature", "the detail")
    assert split_title("Just a title") == ("Just a title", "")


def test_strip_status_prefix_dash_variants():
    assert strip_status_prefix("General Availability – Passkeys") == ("Passkeys", "General Availability")
    assert strip_status_prefix("Public Preview — Token protection") == ("Token protection", "Public Preview")
    assert strip_status_prefix("Deprecated - Old API") == ("Old API", "Deprecated")
    assert strip_status_prefix("General Availability â€“ Mojibake") == ("Mojibake", "General Availability")
    assert strip_status_prefix("Plan for change: Something") == ("Plan for change: Something", "")
    assert strip_status_prefix("Passkeys") == ("Passkeys", "")


def test_first_sentence():
    assert first_sentence("First one. Second one.") == "First one."
    assert first_sentence("No period here") == "No period here"
    long = first_sentence("word " * 60)
    assert len(long) == 120
    assert long.endswith("…")


def test_parse_month_heading():
    assert parse_month_heading("July 2025") == ("July 2025", "2025-07-31")
    assert parse_month_heading("february 2024") == ("February 2024", "2024-02-29")
    assert parse_month_heading("Summer 2025") is None
    assert parse_month_heading("July 2025 updates") is None


def test_parse_week_heading():
    assert parse_week_heading("Week of June 23, 2025 (Service release 2506)") == (
        "2025-06-23",
        "Service release 2506",
    )
    assert parse_week_heading("Week of July 14, 2025") == ("2025-07-14", None)
    assert parse_week_heading("Week of sometime soon") is None
    assert parse_week_heading("Week of June 23") is None
    assert parse_week_heading("Week of June 23 (Service release 2506)") is None
    assert parse_week_heading("July 2025") is None


def test_find_date():
    assert find_date("Starting September 30, 2025, things change") == "2025-09-30"
    assert find_date("In October 2025 we retire it") == "2025-10-01"
    assert find_date("Effective 2025-11-05.") == "2025-11-05"
    assert find_date("No date at all") is None


def test_synthetic_date_is_stable():
    d = synthetic_date("some notice content")
    assert d == synthetic_date("some notice content")
    assert d.startswith("2025-")
    assert synthetic_date("") == synthetic_date(None)
