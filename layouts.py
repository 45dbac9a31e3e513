import re
from collections import Counter
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from categories import NOTICE_CATEGORY, SERVICE_DEFAULT, service_category, topic_category
from normalizers import (
    block_markup,
    content_id,
    extract_markup,
    extract_text,
    find_date,
    first_sentence,
    markup_to_plain_formatting,
    parse_month_heading,
    parse_week_heading,
    resolve_anchor,
    split_title,
    strip_status_prefix,
    synthetic_date,
)


PLACEHOLDER = "No additional details available."
GENERAL_TOPIC = "General Updates"
GENERAL_KEY = "General"
DIGEST_TOPIC = "Monthly Updates"
DIGEST_DEFAULT_CATEGORY = "general"

NOTICE_KEYWORDS = ("plan for change", "notice", "important")

# "Type: ... Service category: ... Product capability: ..." の3ラベルは必ず同じ行に揃って出る
METADATA_RE = re.compile(
    r"Type:\s*(.*?)\s*Service category:\s*(.*?)\s*Product capability:\s*(.*?)\s*$",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Tree helpers
# ---------------------------------------------------------------------------

def heading_level(el) -> int | None:
    if isinstance(el, Tag) and re.fullmatch(r"h[1-6]", el.name or ""):
        return int(el.name[1])
    return None


def iter_section(heading):
    """heading の後続の兄弟要素を、同レベル以上の見出しが現れるまで返す。"""
    level = heading_level(heading) or 6
    for el in heading.next_siblings:
        if not isinstance(el, Tag):
            continue
        lv = heading_level(el)
        if lv is not None and lv <= level:
            break
        yield el


def first_link(el, base_url: str) -> str | None:
    """el 内で最初の、取得元と同じホストを指すリンク（絶対 URL）。"""
    host = urlparse(base_url).netloc
    anchors = [el] if el.name == "a" else el.find_all("a", href=True)
    for a in anchors:
        href = (a.get("href") or "").strip()
        if not href or href.startswith(("mailto:", "javascript:")):
            continue
        absolute = urljoin(base_url, href)
        if urlparse(absolute).netloc == host:
            return absolute
    return None


def list_items(lst) -> list:
    return [li for li in lst.find_all("li", recursive=False)]


def make_update(title, subtitle, content, link, service, category, **extra) -> dict:
    """UpdateRecord を組み立てる。空の任意フィールドは出力しない。"""
    content = content or PLACEHOLDER
    update = {
        "id": content_id(title, subtitle, content),
        "title": title,
        "subtitle": subtitle or None,
        "content": content,
        "features": extra.pop("features", None) or None,
        "link": link,
        "service": service,
        "category": category,
    }
    for k, v in extra.items():
        update[k] = v
    return {k: v for k, v in update.items() if v not in (None, "", [])}


def make_bucket(granularity: str, label: str, bucket_date: str, source: dict, topics: list,
                service_release: str | None = None) -> dict:
    return {
        granularity: label,
        "date": bucket_date,
        "service": source["service"],
        "serviceRelease": service_release,
        "granularity": granularity,
        "topics": topics,
    }


def _add_bucket(buckets: dict, bucket: dict) -> None:
    # 同じ日付の見出しが2回出た場合はトピックを連結する（後勝ちで消さない）
    existing = buckets.get(bucket["date"])
    if existing is None:
        buckets[bucket["date"]] = bucket
    else:
        existing["topics"].extend(bucket["topics"])


def _file_update(topics: dict, key: str, category: str, update: dict) -> None:
    topic = topics.get(key)
    if topic is None:
        topic = {"topic": key, "category": category, "updates": []}
        topics[key] = topic
    topic["updates"].append(update)


# ---------------------------------------------------------------------------
# Weekly: "Week of ..." (h2) → topic (h3) → update (h4)
# ---------------------------------------------------------------------------

def _absorb_update_body(draft: dict, el, base_url: str) -> None:
    if el.name == "p":
        if extract_text(el):
            draft["has_body"] = True
            draft["markup"].append(block_markup(el, base_url))
    elif el.name in ("ul", "ol"):
        items = [extract_text(li) for li in list_items(el)]
        items = [t for t in items if t]
        if items:
            draft["has_body"] = True
            draft["features"].extend(items)
            draft["markup"].append(block_markup(el, base_url))
    if draft["body_link"] is None:
        draft["body_link"] = first_link(el, base_url)


def _finish_weekly_update(draft: dict, topic: dict, source: dict) -> None:
    url = source["url"]
    title, subtitle = split_title(extract_text(draft["heading"]))
    content = "\n".join(draft["markup"]) if draft["has_body"] else PLACEHOLDER
    link = resolve_anchor(draft["heading"], url) or draft["body_link"] or url
    topic["updates"].append(
        make_update(title, subtitle, content, link, source["service"], topic["category"],
                    features=draft["features"])
    )


def parse_weekly(soup, source: dict) -> list:
    buckets = {}
    for h2 in soup.find_all("h2"):
        week_text = extract_text(h2)
        if not week_text.lower().startswith("week of"):
            continue
        parsed = parse_week_heading(week_text)
        if parsed is None:
            print(f'[WARN] {source["service"]}: 週の日付を解釈できないためスキップ -> "{week_text}"')
            continue
        week_date, release = parsed

        topics = []
        topic = None  # None = 最初の h3 待ち
        draft = None  # None = h4 待ち / dict = 更新本文の読み込み中

        for el in iter_section(h2):
            lv = heading_level(el)
            if lv is not None:
                if draft is not None:
                    _finish_weekly_update(draft, topic, source)
                    draft = None
                if lv == 3:
                    name = extract_text(el)
                    topic = {"topic": name, "category": topic_category(name), "updates": []}
                    topics.append(topic)
                elif lv == 4 and topic is not None:
                    draft = {"heading": el, "markup": [], "features": [], "has_body": False, "body_link": None}
                continue
            if draft is not None:
                _absorb_update_body(draft, el, source["url"])

        if draft is not None:
            _finish_weekly_update(draft, topic, source)

        kept = [t for t in topics if t["updates"]]
        if kept:
            _add_bucket(buckets, make_bucket("week", week_text, week_date, source, kept, release))
    return list(buckets.values())


# ---------------------------------------------------------------------------
# Monthly (structured): "July 2025" → table / list / h3 sections
# ---------------------------------------------------------------------------

def find_month_headings(soup, levels=("h2", "h3")) -> list:
    """月見出しを探す。h2 で見つからない場合のみ次のレベルを試す。"""
    for name in levels:
        found = []
        for h in soup.find_all(name):
            parsed = parse_month_heading(extract_text(h))
            if parsed:
                found.append((h, parsed))
        if found:
            return found
    return []


def _table_updates(table, source: dict, fallback_link: str) -> list:
    """表の各データ行 → (update, topic_key, category)。列: 種別 / サービスカテゴリ / 説明 / (機能)。"""
    url = source["url"]
    out = []
    has_th = table.find("th") is not None
    for i, tr in enumerate(table.find_all("tr")):
        cells = tr.find_all(["td", "th"], recursive=False)
        if has_th and cells and all(c.name == "th" for c in cells):
            continue
        if not has_th and i == 0:
            continue
        if len(cells) < 3:
            continue

        change_type = extract_text(cells[0])
        svc_label = extract_text(cells[1])
        description = extract_text(cells[2])
        capability = extract_text(cells[3]) if len(cells) > 3 else ""
        if not description:
            continue

        category = service_category(svc_label)
        update = make_update(
            first_sentence(description),
            f"Type: {change_type}" if change_type else "",
            extract_markup(cells[2], url),
            first_link(cells[2], url) or fallback_link,
            source["service"],
            category,
            serviceCategory=svc_label,
            productCapability=capability,
            changeType=change_type,
        )
        out.append((update, capability or svc_label or GENERAL_KEY, category))
    return out


def _absorb_section_body(draft: dict, el, base_url: str) -> None:
    text = extract_text(el)
    if not text:
        return
    if el.name == "p" and draft["meta"] is None:
        m = METADATA_RE.search(text)
        if m:
            draft["meta"] = {"type": m.group(1), "category": m.group(2), "capability": m.group(3)}
            return
    if el.name in ("ul", "ol"):
        # 対応値の一覧として本文に連結する
        draft["features"].extend(t for t in (extract_text(li) for li in list_items(el)) if t)
    draft["markup"].append(block_markup(el, base_url))
    if draft["body_link"] is None:
        draft["body_link"] = first_link(el, base_url)


def _finish_section(draft: dict, source: dict):
    url = source["url"]
    title, status = strip_status_prefix(extract_text(draft["heading"]))
    meta = draft["meta"] or {}
    change_type = meta.get("type", "")
    svc_label = meta.get("category", "")
    capability = meta.get("capability", "")

    subtitle = status or (f"Type: {change_type}" if change_type else "")
    category = service_category(svc_label)
    update = make_update(
        title,
        subtitle,
        "\n".join(draft["markup"]),
        resolve_anchor(draft["heading"], url) or draft["body_link"] or url,
        source["service"],
        category,
        features=draft["features"],
        serviceCategory=svc_label,
        productCapability=capability,
        changeType=change_type,
        status=status,
    )
    return update, capability or svc_label or GENERAL_KEY, category


def _close_section(draft, topics: dict, source: dict) -> None:
    if draft is None:
        return
    update, key, category = _finish_section(draft, source)
    _file_update(topics, key, category, update)


def parse_monthly_structured(soup, source: dict) -> list:
    url = source["url"]
    buckets = {}
    for heading, (label, month_date) in find_month_headings(soup, ("h2", "h3")):
        month_link = resolve_anchor(heading, url) or url
        topics = {}
        draft = None  # None = 見出し待ち / dict = 小見出しセクションの読み込み中

        for el in iter_section(heading):
            if heading_level(el) is not None:
                _close_section(draft, topics, source)
                draft = {"heading": el, "meta": None, "markup": [], "features": [], "body_link": None}
            elif el.name == "table":
                # 表の行は個別レコード。小見出しセクションは閉じない（表の後の本文もその見出しに属する）
                for update, key, category in _table_updates(el, source, month_link):
                    _file_update(topics, key, category, update)
            elif el.name in ("ul", "ol") and draft is None:
                # 小見出しより前の箇条書きだけが単独リスト
                for li in list_items(el):
                    text = extract_text(li)
                    if not text:
                        continue
                    update = make_update(
                        first_sentence(text), "", extract_markup(li, url),
                        first_link(li, url) or month_link, source["service"], SERVICE_DEFAULT,
                    )
                    _file_update(topics, GENERAL_TOPIC, SERVICE_DEFAULT, update)
            elif draft is not None:
                _absorb_section_body(draft, el, url)
        _close_section(draft, topics, source)

        kept = [t for t in topics.values() if t["updates"]]
        if kept:
            _add_bucket(buckets, make_bucket("month", label, month_date, source, kept))
    return list(buckets.values())


# ---------------------------------------------------------------------------
# Monthly (digest): month heading + flat bullets → 1 summary per month
# ---------------------------------------------------------------------------

def parse_monthly_digest(soup, source: dict) -> list:
    url = source["url"]
    category = source.get("digest_category") or DIGEST_DEFAULT_CATEGORY
    buckets = {}
    for heading, (label, month_date) in find_month_headings(soup, ("h2",)):
        bullets = []
        seen = set()
        for el in iter_section(heading):
            lists = [el] if el.name in ("ul", "ol") else el.find_all(["ul", "ol"])
            for lst in lists:
                # li の中の入れ子リストは親 li の markup に含まれる
                if lst is not el and lst.find_parent("li") is not None:
                    continue
                for li in list_items(lst):
                    text = extract_text(li)
                    if text and text not in seen:
                        seen.add(text)
                        bullets.append((text, extract_markup(li, url)))
        if not bullets:
            continue

        content = "<ul>" + "".join(f"<li>{markup}</li>" for _, markup in bullets) + "</ul>"
        update = make_update(
            f"{label} Updates", "Monthly Summary", content,
            resolve_anchor(heading, url) or url, source["service"], category,
        )
        topic = {"topic": DIGEST_TOPIC, "category": category, "updates": [update]}
        _add_bucket(buckets, make_bucket("month", label, month_date, source, [topic]))
    return list(buckets.values())


# ---------------------------------------------------------------------------
# Notices（全レイアウト共通の2回目の走査）
# ---------------------------------------------------------------------------

def _notice_content(blocks: list, base_url: str, fmt: str) -> str:
    if fmt != "markdown":
        return "\n".join(block_markup(b, base_url) for b in blocks)
    parts = []
    for b in blocks:
        if b.name in ("ul", "ol"):
            items = [markup_to_plain_formatting(extract_markup(li, base_url)) for li in list_items(b)]
            parts.append("\n".join(f"- {t}" for t in items if t))
        else:
            parts.append(markup_to_plain_formatting(block_markup(b, base_url)))
    return "\n\n".join(p for p in parts if p)


def sweep_notices(soup, source: dict) -> list:
    url = source["url"]
    fmt = source.get("notice_format", "html")
    notices = []
    seen_ids = set()
    for heading in soup.find_all(["h3", "h4"]):
        title = extract_text(heading)
        low = title.lower()
        if not any(k in low for k in NOTICE_KEYWORDS):
            continue

        blocks = []
        for el in heading.next_siblings:
            if not isinstance(el, Tag):
                continue
            lv = heading_level(el)
            if lv is not None and lv <= 4:
                break
            if el.name in ("p", "ul", "ol") and extract_text(el):
                blocks.append(el)
        if not blocks:
            continue

        content = _notice_content(blocks, url, fmt)
        nid = content_id(title, "", content)
        if nid in seen_ids:
            continue
        seen_ids.add(nid)

        plain = " ".join(extract_text(b) for b in blocks)
        notices.append({
            "id": nid,
            "title": title,
            "content": content,
            "contentFormat": fmt,
            "date": find_date(plain) or synthetic_date(content),
            "service": source["service"],
            "type": "warning",
            "category": NOTICE_CATEGORY,
            "status": "active",
            "source": url,
            "link": resolve_anchor(heading, url) or url,
        })
    return notices


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

LAYOUTS = {
    "weekly": parse_weekly,
    "monthly_structured": parse_monthly_structured,
    "monthly_digest": parse_monthly_digest,
}


def warn_duplicate_ids(buckets: list, notices: list, source: dict) -> int:
    ids = Counter()
    for b in buckets:
        for t in b["topics"]:
            for u in t["updates"]:
                ids[u["id"]] += 1
    for n in notices:
        ids[n["id"]] += 1
    dups = [i for i, c in ids.items() if c > 1]
    for i in dups:
        print(f'[WARN] {source["service"]}: 同一内容の ID が重複 id={i} (x{ids[i]})')
    return len(dups)


def classify(html_text: str, source: dict):
    """HTML → (buckets, notices)。レイアウトは source["layout"] で選ぶ。"""
    soup = BeautifulSoup(html_text or "", "html.parser")
    buckets = LAYOUTS[source["layout"]](soup, source)
    notices = sweep_notices(soup, source)
    warn_duplicate_ids(buckets, notices, source)
    return buckets, notices
