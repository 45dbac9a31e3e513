"""
Tests for the page layout classifiers and the shared notice sweep.
"""
from bs4 import BeautifulSoup

from categories import service_category
from layouts import (
    GENERAL_TOPIC,
    PLACEHOLDER,
    classify,
    parse_monthly_digest,
    parse_monthly_structured,
    parse_weekly,
    sweep_notices,
    warn_duplicate_ids,
)
from normalizers import content_id


def _soup(html):
    return BeautifulSoup(html, "html.parser")


def _updates(bucket):
    return [u for t in bucket["topics"] for u in t["updates"]]


# ---------------------------------------------------------------------------
# Weekly
# ---------------------------------------------------------------------------

def test_weekly_buckets(sources, pages, capsys):
    """Unparseable weeks are skipped with a warning; other headings are ignored."""
    buckets = parse_weekly(_soup(pages["intune"]), sources["intune"])

    assert [b["date"] for b in buckets] == ["2025-06-23", "2025-07-14"]
    assert "週の日付を解釈できない" in capsys.readouterr().out

    first = buckets[0]
    assert first["week"] == "Week of June 23, 2025 (Service release 2506)"
    assert first["serviceRelease"] == "Service release 2506"
    assert first["granularity"] == "week"
    assert first["service"] == "Intune"
    assert buckets[1]["serviceRelease"] is None


def test_weekly_drops_empty_topics(sources, pages):
    buckets = parse_weekly(_soup(pages["intune"]), sources["intune"])
    for b in buckets:
        assert b["topics"]
        for t in b["topics"]:
            assert t["updates"]
    assert [t["topic"] for t in buckets[0]["topics"]] == ["App management", "Device security"]
    assert [t["category"] for t in buckets[0]["topics"]] == ["app-management", "device-security"]


def test_weekly_update_fields(sources, pages):
    url = sources["intune"]["url"]
    buckets = parse_weekly(_soup(pages["intune"]), sources["intune"])
    config, retired = buckets[0]["topics"][0]["updates"]

    assert config["title"] == "New app configuration settings"
    assert config["subtitle"] == "Managed Google Play"
    assert config["features"] == ["Setting one", "Setting two"]
    assert config["link"] == url + "#new-app-config"
    assert config["category"] == "app-management"
    assert 'class="lead"' not in config["content"]
    assert "https://learn.microsoft.com/en-us/intune/intune-service/apps/app-configuration-policies-overview" in config["content"]
    assert config["id"] == content_id(config["title"], config["subtitle"], config["content"])

    assert retired["title"] == "Retired feature"
    assert retired["subtitle"] == "Legacy enrollment"
    assert retired["content"] == PLACEHOLDER
    assert "features" not in retired
    assert retired["link"].startswith(url + "#retired-feature")


def test_weekly_body_link_when_heading_has_no_anchor(sources):
    """Without a usable anchor the first same-host body link wins over the page URL."""
    source = sources["intune"]
    html = """
    <h2>Week of March 3, 2025</h2>
    <h3>Device security</h3>
    <h4>!!!</h4>
    <p>See <a href="https://example.com/x">partner</a> and <a href="/en-us/intune/doc">docs</a>.</p>
    <h4>???</h4>
    <p>No links here.</p>
    """
    (bucket,) = parse_weekly(_soup(html), source)
    first, second = _updates(bucket)
    assert first["link"] == "https://learn.microsoft.com/en-us/intune/doc"
    assert second["link"] == source["url"]


def test_weekly_same_date_merges_topics(sources):
    html = """
    <h2>Week of March 3, 2025</h2>
    <h3>App management</h3><h4>One</h4><p>a</p>
    <h2>Week of March 3, 2025</h2>
    <h3>Device security</h3><h4>Two</h4><p>b</p>
    """
    buckets = parse_weekly(_soup(html), sources["intune"])
    assert len(buckets) == 1
    assert [t["topic"] for t in buckets[0]["topics"]] == ["App management", "Device security"]


# ---------------------------------------------------------------------------
# Monthly structured
# ---------------------------------------------------------------------------

def test_structured_table_rows_share_capability_topic(sources, pages):
    """Two table rows under "July 2025" land in one bucket and one capability topic."""
    url = sources["entra"]["url"]
    buckets = parse_monthly_structured(_soup(pages["entra"]), sources["entra"])
    july = buckets[0]

    assert july["month"] == "July 2025"
    assert july["date"] == "2025-07-31"
    assert july["granularity"] == "month"
    assert len(july["topics"]) == 1

    topic = july["topics"][0]
    assert topic["topic"] == "Identity Security"
    assert topic["category"] == service_category("Conditional Access")
    assert len(topic["updates"]) == 2

    first, second = topic["updates"]
    assert first["title"] == "Conditional Access now supports token protection."
    assert first["subtitle"] == "Type: New feature"
    assert first["changeType"] == "New feature"
    assert first["serviceCategory"] == "Conditional Access"
    assert first["productCapability"] == "Identity Security"
    assert first["link"] == "https://learn.microsoft.com/en-us/entra/identity/conditional-access/concept-token-protection"
    assert second["link"] == url + "#july-2025"
    assert "<strong>policy impact</strong>" in second["content"]


def test_structured_heading_sections(sources, pages):
    buckets = parse_monthly_structured(_soup(pages["entra"]), sources["entra"])
    june = buckets[1]
    assert june["date"] == "2025-06-30"

    by_topic = {t["topic"]: t for t in june["topics"]}
    assert set(by_topic) == {"User Authentication", "General"}

    (passkeys,) = by_topic["User Authentication"]["updates"]
    assert by_topic["User Authentication"]["category"] == "authentication"
    assert passkeys["title"] == "Passkeys in Microsoft Authenticator"
    assert passkeys["status"] == "General Availability"
    assert passkeys["subtitle"] == "General Availability"
    assert passkeys["changeType"] == "New feature"
    assert passkeys["serviceCategory"] == "Authentications (Logins)"
    assert passkeys["features"] == ["iOS 17 and later", "Android 14 and later"]
    assert "Type:" not in passkeys["content"]
    assert "Supported platforms:" in passkeys["content"]
    assert passkeys["link"].endswith("#general-availability--passkeys-in-microsoft-authenticator")

    (plan,) = by_topic["General"]["updates"]
    assert by_topic["General"]["category"] == "identity-management"
    assert plan["title"] == "Plan for change: Legacy MFA and SSPR policies retire"
    assert "status" not in plan


def test_structured_standalone_list(sources, pages):
    url = sources["entra"]["url"]
    buckets = parse_monthly_structured(_soup(pages["entra"]), sources["entra"])
    may = buckets[2]
    assert may["date"] == "2025-05-31"
    (topic,) = may["topics"]
    assert topic["topic"] == GENERAL_TOPIC
    assert topic["category"] == "identity-management"

    first, second = topic["updates"]
    assert first["title"] == "Sign-in logs now include the authenticationContext field."
    assert first["link"] == url + "#may-2025"
    assert second["title"] == "Health monitoring alerts are available"
    assert second["link"] == "https://learn.microsoft.com/en-us/entra/identity/monitoring-health/overview"


def test_structured_falls_back_to_h3_month_headings(sources):
    html = """
    <h2>Overview</h2>
    <h3>August 2025</h3>
    <ul><li>Something shipped.</li></ul>
    """
    (bucket,) = parse_monthly_structured(_soup(html), sources["entra"])
    assert bucket["date"] == "2025-08-31"


def test_structured_table_without_header_cells(sources):
    """The first row is treated as the header when no <th> is present."""
    html = """
    <h2>August 2025</h2>
    <table><tr><td>Type</td><td>Category</td><td>Description</td></tr>
    <tr><td>New</td><td>MFA</td><td>MFA registration.</td></tr></table>
    """
    (bucket,) = parse_monthly_structured(_soup(html), sources["entra"])
    (update,) = _updates(bucket)
    assert update["title"] == "MFA registration."
    assert update["category"] == "authentication"
    assert bucket["topics"][0]["topic"] == "MFA"


def test_structured_list_after_table_stays_in_section_body(sources):
    """A list following a table inside a sub-heading section belongs to that section."""
    html = """
    <h2>August 2025</h2>
    <h3>Section</h3>
    <p>Intro.</p>
    <table><tr><th>Type</th><th>Service category</th><th>Description</th></tr>
    <tr><td>New</td><td>MFA</td><td>MFA registration.</td></tr></table>
    <ul><li>Supported value</li></ul>
    """
    (bucket,) = parse_monthly_structured(_soup(html), sources["entra"])
    by_title = {u["title"]: u for u in _updates(bucket)}
    assert set(by_title) == {"MFA registration.", "Section"}

    section = by_title["Section"]
    assert section["content"] == "<p>Intro.</p>\n<ul><li>Supported value</li></ul>"
    assert section["features"] == ["Supported value"]
    assert GENERAL_TOPIC not in [t["topic"] for t in bucket["topics"]]


# ---------------------------------------------------------------------------
# Monthly digest
# ---------------------------------------------------------------------------

def test_digest_one_summary_per_month(sources, pages):
    source = sources["defender"]
    buckets = parse_monthly_digest(_soup(pages["defender"]), source)

    # June has no bullets
    assert [b["date"] for b in buckets] == ["2025-07-31", "2025-05-31"]

    july = buckets[0]
    (topic,) = july["topics"]
    assert topic["topic"] == "Monthly Updates"
    assert topic["category"] == "endpoint-security"
    (update,) = topic["updates"]
    assert update["title"] == "July 2025 Updates"
    assert update["subtitle"] == "Monthly Summary"
    assert update["link"] == source["url"] + "#july-2025"
    assert update["content"].startswith("<ul><li>")
    assert update["content"].count("Device isolation") == 1
    assert "Live response is available for macOS." in update["content"]
    assert "Tamper protection reporting" in update["content"]
    assert update["content"].count("Nested detail") == 1


def test_digest_default_category(sources):
    source = dict(sources["defender"])
    source.pop("digest_category")
    (bucket,) = parse_monthly_digest(_soup("<h2>May 2025</h2><ul><li>x</li></ul>"), source)
    assert bucket["topics"][0]["category"] == "general"


# ---------------------------------------------------------------------------
# Notices
# ---------------------------------------------------------------------------

NOTICE_HTML = """
<h2>July 2025</h2>
<h3 id="plan-for-change-x">Plan for change: Legacy MFA retirement</h3>
<p>Starting <strong>September 30, 2025</strong>, legacy MFA is retired. See <a href="/en-us/entra/mfa">docs</a>.</p>
<ul><li>Migrate policies</li></ul>
<h4>Details</h4>
<p>Not part of the notice.</p>
<h3>Important notice</h3>
<p>No date mentioned here.</p>
<h3>Another notice without body</h3>
<h2>June 2025</h2>
"""


def test_notice_sweep_html(sources):
    source = sources["intune"]
    first, second = sweep_notices(_soup(NOTICE_HTML), source)

    assert first["title"] == "Plan for change: Legacy MFA retirement"
    assert first["date"] == "2025-09-30"
    assert first["type"] == "warning"
    assert first["category"] == "plan-for-change"
    assert first["status"] == "active"
    assert first["contentFormat"] == "html"
    assert first["link"] == source["url"] + "#plan-for-change-x"
    assert first["source"] == source["url"]
    assert "Not part of the notice" not in first["content"]
    assert "<li>Migrate policies</li>" in first["content"]
    assert first["id"] == content_id(first["title"], "", first["content"])

    assert second["content"] == "<p>No date mentioned here.</p>"
    assert second["date"].startswith("2025-")


def test_notice_sweep_markdown(sources):
    (first, _) = sweep_notices(_soup(NOTICE_HTML), sources["entra"])
    assert first["contentFormat"] == "markdown"
    assert first["content"] == (
        "Starting **September 30, 2025**, legacy MFA is retired. "
        "See [docs](https://learn.microsoft.com/en-us/entra/mfa).\n\n- Migrate policies"
    )


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

def test_classify_entra_page(sources, pages):
    buckets, notices = classify(pages["entra"], sources["entra"])
    assert len(buckets) == 3
    assert sum(len(_updates(b)) for b in buckets) == 6
    (notice,) = notices
    assert notice["date"] == "2025-09-30"
    assert notice["service"] == "Entra"


def test_classify_page_without_sections(sources):
    buckets, notices = classify("<html><body><p>Maintenance</p></body></html>", sources["defender"])
    assert buckets == []
    assert notices == []


def test_warn_duplicate_ids(sources, capsys):
    update = {"id": 42}
    buckets = [{"topics": [{"updates": [update, dict(update)]}]}]
    assert warn_duplicate_ids(buckets, [], sources["intune"]) == 1
    assert "id=42" in capsys.readouterr().out
