"""全ソースの取得に失敗した時の最小データセット。

何度実行しても同じファイルを同じ内容で書く（index.json のタイムスタンプのみ変わる）。
既に data/ にある過去の取得結果は消さずに index へ載せ直す。

実行: `python3 fallback_data.py`
"""
import os

from categories import NOTICE_CATEGORY
from layouts import make_bucket, make_update
from normalizers import content_id
from store import (
    build_index,
    bucket_filename,
    notice_filename,
    reconcile_notices,
    scan_data_files,
    service_dir,
    write_document,
    write_index,
    write_notice_index,
)
from targets import SOURCES


DATA_DIR = "data"
FALLBACK_DATE = "2025-07-14"
FALLBACK_SOURCE_ID = "intune"


def _fallback_source() -> dict:
    for s in SOURCES:
        if s["id"] == FALLBACK_SOURCE_ID:
            return s
    return SOURCES[0]


def fallback_bucket() -> dict:
    source = _fallback_source()
    update = make_update(
        "Microsoft Copilot in Intune",
        "Explore Intune data with natural language",
        "You can now use Microsoft Copilot in Intune to explore your Intune data using natural language, "
        "take action on the results, manage policies and settings, understand your security posture, "
        "and troubleshoot device issues.",
        source["url"],
        source["service"],
        "device-management",
        features=[
            "Explore your Intune data using natural language queries",
            "Conversational chat experience for device troubleshooting",
            "Policy and setting management assistance",
        ],
    )
    topic = {"topic": "Device management", "category": "device-management", "updates": [update]}
    return make_bucket("week", "Week of July 14, 2025", FALLBACK_DATE, source, [topic])


def fallback_notice() -> dict:
    source = _fallback_source()
    title = "Data Update Notice"
    content = (
        "This site automatically updates data from Microsoft Learn. "
        "If you see this message, the latest data may not be available yet."
    )
    return {
        "id": content_id(title, "", content),
        "title": title,
        "content": content,
        "contentFormat": "html",
        "date": FALLBACK_DATE,
        "service": source["service"],
        "type": "info",
        "category": NOTICE_CATEGORY,
        "status": "active",
        "source": source["url"],
        "link": source["url"],
    }


def generate_fallback(data_dir: str = DATA_DIR) -> dict:
    print("[FALLBACK] fallback データを生成")
    source = _fallback_source()
    svc = service_dir(source["service"])

    bucket = fallback_bucket()
    rel = f"updates/{svc}/{bucket_filename(bucket)}"
    status = write_document(os.path.join(data_dir, rel), bucket)
    print(f"[FALLBACK] {rel} : {status}")

    notice = fallback_notice()
    rel = f"notices/{svc}/{notice_filename(notice)}"
    status = write_document(os.path.join(data_dir, rel), notice, stamp_field="lastUpdated")
    print(f"[FALLBACK] {rel} : {status}")

    total_notices = 0
    for s in SOURCES:
        notice_files = reconcile_notices(data_dir, service_dir(s["service"]))
        notice_files.sort(key=lambda x: (x.get("date") or "", x["filename"]), reverse=True)
        write_notice_index(data_dir, s["service"], notice_files)
        total_notices += len(notice_files)

    index = build_index(scan_data_files(data_dir), total_notices, [s["service"] for s in SOURCES])
    write_index(data_dir, index)
    print(f"[FALLBACK] index.json : {index['totalFiles']} files, {index['totalUpdates']} updates")
    return index


if __name__ == "__main__":
    generate_fallback()
