import json
import os
import html
from datetime import datetime, timezone

from normalizers import plain_formatting_to_markup
from store import INDEX_FILE, service_dir


DATA_DIR = "data"
OUTPUT_FILE = "dashboard.html"


def guess_base_url() -> str:
    site = (os.environ.get("SITE_URL") or "").strip()
    if site:
        return site.rstrip("/") + "/"
    repo = os.environ.get("GITHUB_REPOSITORY", "")
    if repo and "/" in repo:
        owner, name = repo.split("/", 1)
        return f"https://{owner}.github.io/{name}/"
    return "http://localhost/"


def iso_to_human(s: str) -> str:
    if not s:
        return ""
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    except Exception:
        return s


def read_json(path: str):
    """欠けている / 壊れているファイルは None（表示側は読み飛ばして続行する）。"""
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except Exception as e:
        print(f"[WARN] 読み込み失敗（スキップ） {path} -> {e}")
        return None


def load_updates(data_dir: str, index: dict) -> list:
    """index.json の dataFiles を辿り、全バケットの topics[].updates[] を1列に並べる。"""
    updates = []
    for entry in index.get("dataFiles") or []:
        rel = entry.get("path") if isinstance(entry, dict) else None
        if not rel:
            continue
        bucket = read_json(os.path.join(data_dir, rel))
        if not isinstance(bucket, dict):
            continue
        period = bucket.get("week") or bucket.get("month") or ""
        for topic in bucket.get("topics") or []:
            if not isinstance(topic, dict):
                continue
            for u in topic.get("updates") or []:
                if not isinstance(u, dict):
                    continue
                updates.append(
                    {
                        "id": u.get("id"),
                        "title": u.get("title") or "(no title)",
                        "subtitle": u.get("subtitle") or "",
                        "content": u.get("content") or "",
                        "features": u.get("features") or [],
                        "link": u.get("link") or "",
                        "service": u.get("service") or bucket.get("service") or "",
                        "category": u.get("category") or topic.get("category") or "",
                        "topic": topic.get("topic") or "",
                        "date": bucket.get("date") or "",
                        "period": period,
                    }
                )

    # update.id は一意とは限らないので、表示用のキーは並び順で振る
    updates.sort(key=lambda x: x["date"], reverse=True)
    for i, u in enumerate(updates):
        u["key"] = i
    return updates


def load_notices(data_dir: str, services: list) -> list:
    notices = []
    for service in services:
        svc = service_dir(service)
        nidx = read_json(os.path.join(data_dir, "notices", svc, INDEX_FILE))
        if not isinstance(nidx, dict):
            continue
        for entry in nidx.get("noticeFiles") or []:
            rel = entry.get("path") if isinstance(entry, dict) else None
            if not rel:
                continue
            n = read_json(os.path.join(data_dir, rel))
            if not isinstance(n, dict):
                continue
            content = n.get("content") or ""
            if n.get("contentFormat") == "markdown":
                content = plain_formatting_to_markup(content)
            notices.append(
                {
                    "title": n.get("title") or "",
                    "content": content,
                    "date": n.get("date") or "",
                    "type": n.get("type") or "info",
                    "service": n.get("service") or service,
                    "link": n.get("link") or "",
                }
            )
    notices.sort(key=lambda x: x["date"], reverse=True)
    return notices


def load_dataset(data_dir: str = DATA_DIR) -> dict:
    index = read_json(os.path.join(data_dir, INDEX_FILE))
    if not isinstance(index, dict):
        index = {}
    services = [s for s in (index.get("services") or []) if isinstance(s, str)]
    updates = load_updates(data_dir, index)
    return {
        "updates": updates,
        "notices": load_notices(data_dir, services),
        "services": services,
        "categories": sorted({u["category"] for u in updates if u["category"]}),
        "lastGenerated": iso_to_human(index.get("lastGenerated") or ""),
    }


def format_category(category: str) -> str:
    return " ".join(w.capitalize() for w in (category or "").split("-"))


def render_html(dataset: dict, base_url: str) -> str:
    def esc(s: str) -> str:
        return html.escape(s or "", quote=True)

    notice_rows = []
    for n in dataset["notices"]:
        link_html = f' <a href="{esc(n["link"])}" target="_blank" rel="noopener">Details</a>' if n["link"] else ""
        notice_rows.append(
            f'<div class="notice" data-type="{esc(n["type"])}">'
            f'<p class="title">[{esc(n["service"])}] {esc(n["title"])}</p>'
            f'<div class="small">{esc(n["date"])}{link_html}</div>'
            f'<div class="body">{n["content"]}</div>'
            "</div>"
        )

    data_json = json.dumps(
        {
            "updates": dataset["updates"],
            "services": dataset["services"],
            "categories": [{"value": c, "label": format_category(c)} for c in dataset["categories"]],
            "base_url": base_url,
        },
        ensure_ascii=False,
    )
    # <script> 内に埋めるので終了タグだけ潰す（HTML エスケープすると JSON.parse が落ちる）
    data_json_safe = data_json.replace("</", "<\\/")

    # NOTE: f-string にすると JS の `${...}` と衝突するので、プレーン文字列 + 置換で埋め込む
    out_html = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>Cloud What's New Tracker</title>
  <style>
    :root { color-scheme: light dark; }
    body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Helvetica, Arial, sans-serif; margin: 0; line-height: 1.55; }
    .wrap { max-width: 1060px; margin: 0 auto; padding: 22px 16px; }
    h1 { margin: 0; font-size: 26px; }
    .sub { opacity: .8; margin: 0; }
    .bar { display: grid; grid-template-columns: 1fr; gap: 10px; margin: 14px 0 10px; }
    @media (min-width: 860px) { .bar { grid-template-columns: 1.2fr .6fr .6fr .6fr; } }
    input, select { font: inherit; padding: 10px; border-radius: 10px; border: 1px solid rgba(127,127,127,.35); background: transparent; }
    .row, .notice { border: 1px solid rgba(127,127,127,.25); border-radius: 12px; padding: 12px; margin: 10px 0; }
    .notice[data-type="warning"] { border-color: rgba(255, 149, 0, .65); }
    .badge { display: inline-block; padding: 2px 10px; border-radius: 999px; border: 1px solid rgba(127,127,127,.35); font-size: 12px; font-weight: 700; }
    .title { font-weight: 650; margin: 0; }
    .small { font-size: 13px; opacity: .85; }
    .count { font-size: 13px; opacity: .85; margin: 6px 0 0; }
  </style>
</head>
<body>
  <div class="wrap">
    <header>
      <h1>Cloud What's New Tracker</h1>
      <p class="sub">Last generated: __LAST_GENERATED__</p>
    </header>

    <h2>Notices</h2>
    <div id="notices">__NOTICES__</div>

    <h2>Updates</h2>
    <div class="bar">
      <input id="q" placeholder="Search title / content / category" />
      <select id="service"><option value="">Service: All</option></select>
      <select id="category"><option value="">Category: All</option></select>
      <select id="time">
        <option value="all">All time</option>
        <option value="7">Last 7 days</option>
        <option value="30">Last 30 days</option>
        <option value="90">Last 90 days</option>
      </select>
    </div>
    <div class="count" id="count"></div>
    <div id="list"></div>
    <div id="empty" class="small" style="margin-top:10px;"></div>
  </div>

  <script id="data" type="application/json">__DATA_JSON__</script>
  <script>
    let data = {};
    try {
      data = JSON.parse(document.getElementById('data').textContent);
    } catch (e) {
      console.error(e);
      data = { updates: [], services: [], categories: [] };
    }
    const updates = data.updates || [];

    const elQ = document.getElementById('q');
    const elService = document.getElementById('service');
    const elCategory = document.getElementById('category');
    const elTime = document.getElementById('time');
    const elList = document.getElementById('list');
    const elCount = document.getElementById('count');
    const elEmpty = document.getElementById('empty');

    for (const s of (data.services || [])) {
      const opt = document.createElement('option');
      opt.value = s; opt.textContent = s;
      elService.appendChild(opt);
    }
    for (const c of (data.categories || [])) {
      const opt = document.createElement('option');
      opt.value = c.value; opt.textContent = c.label;
      elCategory.appendChild(opt);
    }

    function esc(s) {
      return String(s || '').replace(/&/g, '&amp;').replace(/</g, '&lt;').replace(/>/g, '&gt;').replace(/"/g, '&quot;');
    }

    function inRange(dateString, days) {
      if (days === 'all') return true;
      const diff = (Date.now() - new Date(dateString).getTime()) / 86400000;
      return diff <= parseInt(days, 10);
    }

    function render() {
      const q = (elQ.value || '').trim().toLowerCase();
      const service = elService.value || '';
      const category = elCategory.value || '';
      const days = elTime.value || 'all';

      const filtered = updates.filter(u => {
        if (service && u.service !== service) return false;
        if (category && u.category !== category) return false;
        if (!inRange(u.date, days)) return false;
        if (!q) return true;
        return (u.title + '\\n' + u.content + '\\n' + u.category).toLowerCase().includes(q);
      });

      elCount.textContent = `Showing ${filtered.length} of ${updates.length} updates`;
      elList.innerHTML = filtered.map(u => `
<div class="row" data-key="${u.key}">
  <div class="small">${esc(u.date)} · ${esc(u.service)} · ${esc(u.topic)} <span class="badge">${esc(u.category)}</span></div>
  <p class="title">${esc(u.title)}${u.subtitle ? ' — ' + esc(u.subtitle) : ''}</p>
  <div>${u.content}</div>
  ${u.link ? `<div class="small"><a href="${esc(u.link)}" target="_blank" rel="noopener">Read more</a></div>` : ''}
</div>`).join('\\n');
      elEmpty.textContent = filtered.length ? '' : 'No updates found. Try adjusting your search terms or filters.';
    }

    elQ.addEventListener('input', render);
    elService.addEventListener('change', render);
    elCategory.addEventListener('change', render);
    elTime.addEventListener('change', render);
    render();
  </script>
</body>
</html>
"""

    notices_html = "\n".join(notice_rows) or '<p class="small">No notices available at this time.</p>'
    out_html = out_html.replace("__DATA_JSON__", data_json_safe)
    out_html = out_html.replace("__NOTICES__", notices_html)
    out_html = out_html.replace("__LAST_GENERATED__", esc(dataset["lastGenerated"]) or "—")
    return out_html


def main() -> None:
    dataset = load_dataset(DATA_DIR)
    out_html = render_html(dataset, guess_base_url())
    with open(OUTPUT_FILE, "w", encoding="utf-8") as f:
        f.write(out_html)
    print(f"[SUMMARY] Wrote {OUTPUT_FILE} ({len(dataset['updates'])} updates, {len(dataset['notices'])} notices)")


if __name__ == "__main__":
    main()
