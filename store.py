import os
import json
import hashlib
from datetime import datetime, timezone

from normalizers import MONTH_NAMES, slugify


INDEX_FILE = "index.json"

# 毎回変わるタイムスタンプは差分判定から除外する（index / notice のみ）
VOLATILE_FIELDS = ("lastGenerated", "lastUpdated")

STATUS_LABELS = {"created": "新規", "updated": "更新", "unchanged": "変更なし"}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def ensure_dir(path: str) -> None:
    if path and not os.path.exists(path):
        os.makedirs(path, exist_ok=True)


def load_json(path: str):
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except Exception as e:
        print(f"[WARN] JSON を読めないため新規扱い {path} -> {e}")
        return None


def write_json(path: str, doc) -> None:
    ensure_dir(os.path.dirname(path))
    with open(path, "w", encoding="utf-8") as f:
        json.dump(doc, f, ensure_ascii=False, indent=2)
        f.write("\n")


def service_dir(service: str) -> str:
    return slugify(service)


# ---------------------------------------------------------------------------
# Change detection
# ---------------------------------------------------------------------------

def is_volatile_path(path: str) -> bool:
    p = (path or "").replace("\\", "/")
    return os.path.basename(p) == INDEX_FILE or "/notices/" in p or p.startswith("notices/")


def comparable(doc, path: str = ""):
    if not isinstance(doc, dict) or not is_volatile_path(path):
        return doc
    return {k: v for k, v in doc.items() if k not in VOLATILE_FIELDS}


def content_hash(doc) -> str:
    payload = json.dumps(doc, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def has_changed(existing, candidate, path: str = "") -> bool:
    """既存ドキュメントと比べて意味のある差分があるか。既存が無ければ常に True。"""
    if existing is None:
        return True
    return content_hash(comparable(existing, path)) != content_hash(comparable(candidate, path))


def write_document(path: str, doc: dict, stamp_field: str | None = None, always: bool = False) -> str:
    """差分がある時だけ書く（always=True なら常に書く）。

    stamp_field には書き込み時刻を入れる（差分判定には使わない）。
    Returns: "created" / "updated" / "unchanged"
    """
    existing = load_json(path)
    changed = has_changed(existing, doc, path)
    if not changed and not always:
        return "unchanged"

    out = dict(doc)
    if stamp_field:
        out[stamp_field] = utc_now_iso()
    write_json(path, out)

    if existing is None:
        return "created"
    return "updated" if changed else "unchanged"


# ---------------------------------------------------------------------------
# Filenames / manifest entries
# ---------------------------------------------------------------------------

def bucket_filename(bucket: dict) -> str:
    return f"{bucket['date']}.json"


def notice_filename(notice: dict, with_id: bool = False) -> str:
    """<date>-<slug>.json。同じ実行で名前が衝突した2件目以降は id を付けて区別する。"""
    stem = f"{notice['date']}-{slugify(notice.get('title') or '', 50)}"
    if with_id:
        stem += f"-{notice.get('id')}"
    return f"{stem}.json"


def count_updates(bucket: dict) -> int:
    total = 0
    for topic in bucket.get("topics") or []:
        if isinstance(topic, dict):
            total += len(topic.get("updates") or [])
    return total


def summarize_bucket(bucket: dict, rel_path: str) -> dict:
    granularity = bucket.get("granularity") or ("week" if "week" in bucket else "month")
    return {
        "filename": os.path.basename(rel_path),
        "path": rel_path,
        "service": bucket.get("service"),
        "granularity": granularity,
        granularity: bucket.get(granularity),
        "date": bucket.get("date"),
        "serviceRelease": bucket.get("serviceRelease"),
        "updates": count_updates(bucket),
    }


def summarize_notice(notice: dict, rel_path: str) -> dict:
    return {
        "filename": os.path.basename(rel_path),
        "path": rel_path,
        "id": notice.get("id"),
        "title": notice.get("title"),
        "date": notice.get("date"),
        "type": notice.get("type"),
        "category": notice.get("category"),
        "status": notice.get("status"),
    }


# ---------------------------------------------------------------------------
# Directory reconciliation（今回取得していない既存ファイルも manifest に載せる）
# ---------------------------------------------------------------------------

def _scan_dir(dir_path: str, skip=()) -> list:
    if not os.path.isdir(dir_path):
        return []
    out = []
    for name in sorted(os.listdir(dir_path)):
        if not name.endswith(".json") or name == INDEX_FILE or name in skip:
            continue
        path = os.path.join(dir_path, name)
        try:
            with open(path, "r", encoding="utf-8") as f:
                out.append((name, json.load(f)))
        except Exception as e:
            print(f"[WARN] 既存ファイルを読めないため manifest から除外 {path} -> {e}")
    return out


def reconcile_updates(data_dir: str, svc: str, skip=()) -> list:
    entries = []
    for name, doc in _scan_dir(os.path.join(data_dir, "updates", svc), skip):
        rel = f"updates/{svc}/{name}"
        if not isinstance(doc, dict) or not doc.get("date") or not isinstance(doc.get("topics"), list):
            print(f"[WARN] 形式不一致のため manifest から除外 {rel}")
            continue
        entries.append(summarize_bucket(doc, rel))
    return entries


def reconcile_notices(data_dir: str, svc: str, skip=()) -> list:
    entries = []
    for name, doc in _scan_dir(os.path.join(data_dir, "notices", svc), skip):
        rel = f"notices/{svc}/{name}"
        if not isinstance(doc, dict) or not doc.get("title"):
            print(f"[WARN] 形式不一致のため manifest から除外 {rel}")
            continue
        entries.append(summarize_notice(doc, rel))
    return entries


def scan_data_files(data_dir: str) -> list:
    """updates/ 配下の全ソースのバケットを manifest エントリにする。"""
    root = os.path.join(data_dir, "updates")
    if not os.path.isdir(root):
        return []
    entries = []
    for svc in sorted(os.listdir(root)):
        if os.path.isdir(os.path.join(root, svc)):
            entries.extend(reconcile_updates(data_dir, svc))
    return entries


# ---------------------------------------------------------------------------
# Per-source write path
# ---------------------------------------------------------------------------

def build_notice_index(service: str, notice_files: list) -> dict:
    return {
        "service": service,
        "totalNotices": len(notice_files),
        "totalFiles": len(notice_files),
        "noticeFiles": notice_files,
    }


def write_notice_index(data_dir: str, service: str, notice_files: list) -> str:
    path = os.path.join(data_dir, "notices", service_dir(service), INDEX_FILE)
    return write_document(path, build_notice_index(service, notice_files), stamp_field="lastUpdated", always=True)


def write_source(data_dir: str, source: dict, buckets: list, notices: list) -> dict:
    """1ソース分のバケット / notice を書き、既存ファイルと合わせた manifest を返す。"""
    service = source["service"]
    svc = service_dir(service)

    update_stats = {"created": 0, "updated": 0, "unchanged": 0}
    data_files = []
    written = set()
    for bucket in buckets:
        filename = bucket_filename(bucket)
        rel = f"updates/{svc}/{filename}"
        status = write_document(os.path.join(data_dir, rel), bucket)
        update_stats[status] += 1
        written.add(filename)
        entry = summarize_bucket(bucket, rel)
        data_files.append(entry)
        print(f"[{service}] {rel} : {STATUS_LABELS[status]} ({entry['updates']} updates)")
    data_files.extend(reconcile_updates(data_dir, svc, skip=written))

    notice_stats = {"created": 0, "updated": 0, "unchanged": 0}
    notice_files = []
    written = set()
    for notice in notices:
        filename = notice_filename(notice)
        if filename in written:
            filename = notice_filename(notice, with_id=True)
            print(f"[WARN] {service}: notice のファイル名が重複するため id 付きで保存 {filename}")
        rel = f"notices/{svc}/{filename}"
        status = write_document(os.path.join(data_dir, rel), notice, stamp_field="lastUpdated")
        notice_stats[status] += 1
        written.add(filename)
        notice_files.append(summarize_notice(notice, rel))
        print(f"[{service}] {rel} : {STATUS_LABELS[status]}")
    notice_files.extend(reconcile_notices(data_dir, svc, skip=written))
    notice_files.sort(key=lambda x: (x.get("date") or "", x["filename"]), reverse=True)
    write_notice_index(data_dir, service, notice_files)

    return {
        "service": service,
        "data_files": data_files,
        "notice_files": notice_files,
        "update_stats": update_stats,
        "notice_stats": notice_stats,
    }


# ---------------------------------------------------------------------------
# Global index
# ---------------------------------------------------------------------------

def month_label(month_key: str) -> str:
    year, month = month_key.split("-")
    return f"{MONTH_NAMES[int(month) - 1]} {year}"


def build_monthly_groups(data_files: list) -> list:
    """週 / 月の粒度に関係なく、カレンダー月ごとに集約する（新しい月が先）。"""
    groups = {}
    for f in data_files:
        month = (f.get("date") or "")[:7]
        if len(month) != 7 or month[4] != "-":
            continue
        g = groups.get(month)
        if g is None:
            g = {"month": month, "label": month_label(month), "totalUpdates": 0, "services": [], "files": []}
            groups[month] = g
        g["totalUpdates"] += f.get("updates") or 0
        if f.get("service") and f["service"] not in g["services"]:
            g["services"].append(f["service"])
        g["files"].append(f["path"])
    for g in groups.values():
        g["services"].sort()
    return [groups[k] for k in sorted(groups, reverse=True)]


def build_index(data_files: list, total_notices: int, services: list) -> dict:
    files = sorted(data_files, key=lambda f: (f.get("date") or "", f.get("service") or ""), reverse=True)
    groups = build_monthly_groups(files)
    return {
        "totalUpdates": sum(f.get("updates") or 0 for f in files),
        "totalFiles": len(files),
        "totalMonths": len(groups),
        "totalNotices": total_notices,
        "services": list(services),
        "monthlyGroups": groups,
        "dataFiles": files,
    }


def write_index(data_dir: str, index: dict) -> str:
    """index.json は常に書き直す（lastGenerated を更新）。戻り値は内容の差分有無。"""
    return write_document(os.path.join(data_dir, INDEX_FILE), index, stamp_field="lastGenerated", always=True)
