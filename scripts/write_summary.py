#!/usr/bin/env python3
"""scripts/write_summary.py

GitHub Actions Job Summary writer for the what's-new tracker.

Data source:
  run_multi.log -> [SUMMARY] write counts / totals, [FALLBACK] marker, [HEALTH] lines

Writing strategy:
  - If $GITHUB_STEP_SUMMARY is set, appends Markdown directly to that file.
  - Otherwise, writes to stdout (local testing).
  - The workflow runs: python3 run_multi.py | tee run_multi.log; python3 scripts/write_summary.py
"""

import os
import re
import sys
from pathlib import Path

LOG_PATH = Path("run_multi.log")
MAX_FAIL_DETAILS = 5

STATS_RE = re.compile(
    r"^\[SUMMARY\] (Updates|Notices): (\d+) files "
    r"\(created=(\d+), updated=(\d+), unchanged=(\d+)\)"
)
TOTAL_RE = re.compile(
    r"^\[SUMMARY\] Total: (\d+) updates across (\d+) files, (\d+) months, (\d+) notices"
)
HEALTH_RE = re.compile(
    r'^\[HEALTH\] (OK|FAIL|SKIP) name="([^"]+)" stage=(\w+)'
    r'(?:\s+(?:error|reason)="([^"]*)")?'
)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def read_lines(log_path: Path) -> list[str]:
    if not log_path.exists():
        return []
    try:
        return log_path.read_text(encoding="utf-8", errors="replace").splitlines()
    except Exception:
        return []


def parse_log(lines: list[str]) -> dict:
    """Return the write counts, totals and fallback flag found in the log.

    {
      "stats": {"Updates": {"files", "created", "updated", "unchanged"}, "Notices": {...}},
      "total": {"updates", "files", "months", "notices"} or None,
      "fallback": bool,
    }
    """
    stats: dict[str, dict[str, int]] = {}
    total: dict[str, int] | None = None
    fallback = False

    for ln in lines:
        m = STATS_RE.match(ln)
        if m:
            stats[m.group(1)] = {
                "files": int(m.group(2)),
                "created": int(m.group(3)),
                "updated": int(m.group(4)),
                "unchanged": int(m.group(5)),
            }
            continue
        m = TOTAL_RE.match(ln)
        if m:
            total = {
                "updates": int(m.group(1)),
                "files": int(m.group(2)),
                "months": int(m.group(3)),
                "notices": int(m.group(4)),
            }
            continue
        if ln.startswith("[FALLBACK]"):
            fallback = True

    return {"stats": stats, "total": total, "fallback": fallback}


def parse_health_lines(lines: list[str]) -> tuple[int, int, int, list[str]]:
    """Return (ok, fail, skip, fail_details[max 5]).

    fail_details: list of short descriptions like '`fetch` Intune: 404 Client Error'.
    """
    ok_count = fail_count = skip_count = 0
    fail_details: list[str] = []

    for ln in lines:
        m = HEALTH_RE.match(ln)
        if not m:
            continue
        status, name, stage, detail = m.group(1), m.group(2), m.group(3), m.group(4) or ""
        if status == "OK":
            ok_count += 1
        elif status == "FAIL":
            fail_count += 1
            if len(fail_details) < MAX_FAIL_DETAILS:
                desc = f"`{stage}` {name}"
                if detail:
                    desc += f": {detail}"
                fail_details.append(desc)
        elif status == "SKIP":
            skip_count += 1

    return ok_count, fail_count, skip_count, fail_details


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _sanitize_cell(text: str) -> str:
    """Keep a Markdown table cell on one line and escape pipes."""
    text = re.sub(r"[\r\n\t]+", " ", text)
    text = re.sub(r" {2,}", " ", text)
    text = text.replace("|", r"\|")
    return text.strip()


def build_markdown(
    summary: dict,
    health_ok: int = 0,
    health_fail: int = 0,
    health_skip: int = 0,
    health_fail_details: list[str] | None = None,
) -> str:
    md: list[str] = []
    md.append("## What's New Tracker — 実行サマリ")
    md.append("")

    if summary["fallback"]:
        md.append("**⚠ 全ソースで取得に失敗したため fallback データを出力しました**")
        md.append("")

    stats = summary["stats"]
    if stats:
        md.append("| 種別 | ファイル | 新規 | 更新 | 変更なし |")
        md.append("|------|----------|------|------|----------|")
        for label in ("Updates", "Notices"):
            s = stats.get(label)
            if not s:
                continue
            md.append(
                f"| {_sanitize_cell(label)} | {s['files']} | {s['created']}"
                f" | {s['updated']} | {s['unchanged']} |"
            )
        md.append("")
    elif not summary["fallback"]:
        md.append("_run_multi.log に書き込み結果がありません（未実行または異常終了）。_")
        md.append("")

    total = summary["total"]
    if total:
        md.append(
            f"**合計: {total['updates']} updates / {total['files']} files / "
            f"{total['months']} months / {total['notices']} notices**"
        )

    if health_ok or health_fail or health_skip:
        md.append("")
        md.append("### 健全性（ソース別）")
        md.append("")
        parts = [f"✅ OK: {health_ok} 件"]
        if health_fail:
            parts.append(f"❌ FAIL: {health_fail} 件")
        if health_skip:
            parts.append(f"⏭ SKIP: {health_skip} 件")
        md.append(" / ".join(parts))
        if health_fail_details:
            md.append("")
            md.append(f"<details><summary>FAIL 詳細（{health_fail} 件）</summary>")
            md.append("")
            for d in health_fail_details:
                md.append(f"- {d}")
            md.append("")
            md.append("</details>")

    return "\n".join(md) + "\n"


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main() -> None:
    lines = read_lines(LOG_PATH)
    summary = parse_log(lines)
    h_ok, h_fail, h_skip, h_details = parse_health_lines(lines)

    md = build_markdown(
        summary,
        health_ok=h_ok, health_fail=h_fail,
        health_skip=h_skip, health_fail_details=h_details,
    )

    summary_path = os.environ.get("GITHUB_STEP_SUMMARY")
    if summary_path:
        with open(summary_path, "a", encoding="utf-8") as f:
            f.write(md)
    else:
        sys.stdout.write(md)


if __name__ == "__main__":
    main()
