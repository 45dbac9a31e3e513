import re
import html
import hashlib
import calendar
from datetime import date, datetime, timedelta
from urllib.parse import urljoin

from bs4 import BeautifulSoup, NavigableString, Tag
from dateutil import parser as dtparser


MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
_MONTH_ALT = "|".join(MONTH_NAMES)

MONTH_HEADING_RE = re.compile(rf"^({_MONTH_ALT})\s+(\d{{4}})$", re.IGNORECASE)
WEEK_HEADING_RE = re.compile(r"^Week of\s+(.+?)(?:\s*\(([^)]*)\))?$", re.IGNORECASE)

# 日付を持たない notice に割り当てる仮日付の基準年（変更すると全 notice のファイル名が変わる）
SYNTHETIC_YEAR = 2025

# 見出しの先頭に付くステータス表記（"General Availability - ..." 等）
STATUS_PREFIXES = (
    "General Availability",
    "Public Preview",
    "Private Preview",
    "Plan for change",
    "Breaking change",
    "Deprecated",
    "Retirement",
)
# ハイフン / en dash / em dash / minus と、UTF-8 を cp1252・latin-1 で読んだ文字化け
DASH_VARIANTS = (
    "-",
    "–",
    "—",
    "−",
    "â€“",
    "â€”",
    "â\u0080\u0093",
    "â\u0080\u0094",
)
STATUS_PREFIX_RE = re.compile(
    r"^(" + "|".join(re.escape(p) for p in STATUS_PREFIXES) + r")\s*"
    r"(?:" + "|".join(re.escape(d) for d in DASH_VARIANTS) + r")\s*(.+)$",
    re.IGNORECASE,
)

NOISE_TAGS = ["script", "style", "noscript"]
PRESENTATION_ATTRS = ("class", "style", "id", "role")

INLINE_MARKERS = {"strong": "**", "b": "**", "em": "*", "i": "*", "code": "`"}


def squash(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


# ---------------------------------------------------------------------------
# Text / markup
# ---------------------------------------------------------------------------

def extract_text(node) -> str:
    """表示テキストを1行に正規化して返す。node が None の場合は空文字。

    <br> は空白として扱う（"Type: X<br>Service category: Y" が連結されないように）。
    """
    if node is None:
        return ""
    if isinstance(node, str):
        return squash(str(node))

    parts = []
    for el in node.descendants:
        if isinstance(el, Tag):
            if el.name == "br":
                parts.append(" ")
            continue
        # Comment / Doctype 等は NavigableString のサブクラスなので型で厳密に判定
        if type(el) is NavigableString and el.parent is not None and el.parent.name not in NOISE_TAGS:
            parts.append(str(el))
    return squash("".join(parts))


def extract_markup(node, base_url: str | None = None) -> str:
    """表示用の属性（class/style/id/aria-*/data-*）を落とした HTML を返す。

    - Tag を渡すと内側（子要素）のみ、文字列を渡すとその断片全体を対象にする
    - 構造タグ（p/ul/ol/li/a/strong/em/code/br）はそのまま残す
    - base_url があれば相対リンクを絶対 URL にする
    - 正規化済みの HTML を再度通しても結果は変わらない
    """
    if node is None:
        return ""
    inner = node.decode_contents() if isinstance(node, Tag) else str(node)
    frag = BeautifulSoup(inner, "html.parser")

    for tag in frag.find_all(NOISE_TAGS):
        tag.decompose()

    for tag in frag.find_all(True):
        for attr in list(tag.attrs):
            if attr in PRESENTATION_ATTRS or attr.startswith(("aria-", "data-")):
                del tag.attrs[attr]
        if base_url and tag.name == "a" and tag.get("href"):
            tag["href"] = urljoin(base_url, tag["href"].strip())

    return str(frag).strip()


def block_markup(tag, base_url: str | None = None) -> str:
    """要素自身のタグを含めて正規化する（<p>...</p> を <p> 付きで残したい場合）。"""
    if tag is None:
        return ""
    return extract_markup(str(tag), base_url)


def markup_to_plain_formatting(markup: str) -> str:
    """HTML を軽量インライン記法に変換する（notice の旧フォーマット互換用）。

    **太字** / *斜体* / `code` / [text](url) / 改行 のみ残し、他のタグは落とす。
    記法は plain_formatting_to_markup と対になっているので、片方だけ変えないこと。
    """
    if not markup:
        return ""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup.find_all(NOISE_TAGS):
        tag.decompose()

    # ソース上の改行・インデントは空白扱い（<br> 由来の改行と区別するため先に潰す）
    for s in list(soup.find_all(string=True)):
        if type(s) is NavigableString:
            s.replace_with(re.sub(r"\s+", " ", str(s)))

    # 子から先に置換する（<strong><a>..</a></strong> のような入れ子に対応）
    for tag in reversed(soup.find_all(["strong", "b", "em", "i", "code", "a", "br"])):
        if tag.name == "br":
            tag.replace_with("\n")
            continue
        text = tag.get_text()
        label = text.strip()
        if not label:
            tag.replace_with(text)
        elif tag.name == "a":
            href = (tag.get("href") or "").strip()
            tag.replace_with(f"[{label}]({href})" if href else label)
        else:
            marker = INLINE_MARKERS[tag.name]
            tag.replace_with(f"{marker}{label}{marker}")

    lines = [ln.strip() for ln in soup.get_text().split("\n")]
    return "\n".join(lines).strip()


def plain_formatting_to_markup(text: str) -> str:
    """markup_to_plain_formatting の逆変換（表示側で使う）。入力は先にエスケープする。"""
    s = html.escape(text or "", quote=False)

    def _link(m):
        href = m.group(2).replace('"', "&quot;")
        return f'<a href="{href}">{m.group(1)}</a>'

    s = re.sub(r"\[([^\]]+)\]\(([^)\s]+)\)", _link, s)
    s = re.sub(r"\*\*(.+?)\*\*", r"<strong>\1</strong>", s)
    s = re.sub(r"\*(.+?)\*", r"<em>\1</em>", s)
    s = re.sub(r"`(.+?)`", r"<code>\1</code>", s)
    return s.replace("\n", "<br>")


# ---------------------------------------------------------------------------
# Anchors / slugs
# ---------------------------------------------------------------------------

def slugify(name: str, limit: int = 50) -> str:
    s = (name or "").strip().lower()
    s = re.sub(r"[^a-z0-9]+", "-", s).strip("-")
    s = s[:limit].rstrip("-")
    return s or "unnamed"


def slugify_heading(text: str) -> str:
    """learn.microsoft.com の見出しアンカーに寄せたスラッグ（完全一致は保証しない）。"""
    s = (text or "").lower()
    # em dash は他の置換より先に "--" にする（内側の "--" は残る）
    s = s.replace("—", "--")
    s = re.sub(r"[^\w\s-]", "", s)
    s = re.sub(r"\s+", "-", s)
    return s.strip("-")


def _is_decorative_link(a) -> bool:
    if len(extract_text(a)) <= 2:
        return True
    if (a.get("aria-hidden") or "").lower() == "true":
        return True
    classes = " ".join(a.get("class") or []).lower()
    return "anchor" in classes or "icon" in classes


def resolve_anchor(heading, base_url: str) -> str | None:
    """見出しへのディープリンクを返す。

    優先順: id 属性 → 見出し内のアイコン的な #リンク → 見出しテキストのスラッグ。
    どれも取れない場合は None（呼び出し側でページ URL にフォールバック）。
    """
    if heading is None:
        return None
    page = (base_url or "").split("#", 1)[0]

    ident = (heading.get("id") or "").strip()
    if ident:
        return f"{page}#{ident}"

    for a in heading.find_all("a", href=True):
        href = a["href"].strip()
        if "#" in href and _is_decorative_link(a):
            return urljoin(page, href)

    slug = slugify_heading(extract_text(heading))
    if not slug:
        return None
    return f"{page}#{slug}"


# ---------------------------------------------------------------------------
# IDs
# ---------------------------------------------------------------------------

def content_id(title: str, subtitle: str = "", content: str = "") -> int:
    """title+subtitle+content から決定的な数値 ID を作る（大文字小文字・空白の差は無視）。

    32bit なので衝突はあり得る。取得日時に依存しないことを優先している。
    """
    raw = f"{title or ''}{subtitle or ''}{content or ''}".lower()
    normalized = re.sub(r"\s+", "", raw)
    return int(hashlib.md5(normalized.encode("utf-8")).hexdigest()[:8], 16)


# ---------------------------------------------------------------------------
# Titles
# ---------------------------------------------------------------------------

def split_title(text: str) -> tuple[str, str]:
    """最初のコロン、なければ最初の " - " で title / subtitle に分ける。"""
    text = squash(text)
    colon = text.find(":")
    dash = text.find(" - ")
    if colon > 0:
        return text[:colon].strip(), text[colon + 1:].strip()
    if dash > 0:
        return text[:dash].strip(), text[dash + 3:].strip()
    return text, ""


def strip_status_prefix(text: str) -> tuple[str, str]:
    """"General Availability – X" → ("X", "General Availability")。該当しなければ (text, "")。"""
    text = squash(text)
    m = STATUS_PREFIX_RE.match(text)
    if not m:
        return text, ""
    return m.group(2).strip(), m.group(1)


def first_sentence(text: str, limit: int = 120) -> str:
    s = squash(text)
    m = re.match(r"(.+?[.!?])(?:\s|$)", s)
    if m:
        s = m.group(1)
    if len(s) > limit:
        s = s[: limit - 1].rstrip() + "…"
    return s


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def _month_number(name: str) -> int:
    return MONTH_NAMES.index(name.capitalize()) + 1


def parse_month_heading(text: str) -> tuple[str, str] | None:
    """"July 2025" → ("July 2025", "2025-07-31")。月末日をバケットの日付にする。"""
    m = MONTH_HEADING_RE.match(squash(text))
    if not m:
        return None
    month = _month_number(m.group(1))
    year = int(m.group(2))
    last_day = calendar.monthrange(year, month)[1]
    return f"{MONTH_NAMES[month - 1]} {year}", date(year, month, last_day).isoformat()


def parse_week_heading(text: str) -> tuple[str, str | None] | None:
    """"Week of June 23, 2025 (Service release 2506)" → ("2025-06-23", "Service release 2506")。"""
    m = WEEK_HEADING_RE.match(squash(text))
    if not m:
        return None
    # 年の無い見出しは解釈不能扱い（既定年で埋めない）
    if not re.search(r"\b\d{4}\b", m.group(1)):
        return None
    try:
        dt = dtparser.parse(m.group(1), default=datetime(2000, 1, 1))
    except (ValueError, OverflowError):
        return None
    return dt.date().isoformat(), (m.group(2) or "").strip() or None


def synthetic_date(text: str) -> str:
    """本文ハッシュを固定年のカレンダーに写像した仮日付（毎回同じ日付になる）。"""
    h = int(hashlib.md5((text or "").encode("utf-8")).hexdigest()[:8], 16)
    return (date(SYNTHETIC_YEAR, 1, 1) + timedelta(days=h % 365)).isoformat()


def find_date(text: str) -> str | None:
    s = squash(text)

    m = re.search(rf"\b({_MONTH_ALT})\s+(\d{{1,2}}),?\s+(\d{{4}})\b", s, re.IGNORECASE)
    if m:
        try:
            return date(int(m.group(3)), _month_number(m.group(1)), int(m.group(2))).isoformat()
        except ValueError:
            pass

    m = re.search(rf"\b({_MONTH_ALT})\s+(\d{{4}})\b", s, re.IGNORECASE)
    if m:
        return date(int(m.group(2)), _month_number(m.group(1)), 1).isoformat()

    m = re.search(r"\b(\d{4})-(\d{2})-(\d{2})\b", s)
    if m:
        try:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3))).isoformat()
        except ValueError:
            pass
    return None
