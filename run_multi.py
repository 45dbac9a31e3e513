import argparse
from concurrent.futures import ThreadPoolExecutor

import requests

from fallback_data import generate_fallback
from layouts import classify
from store import STATUS_LABELS, build_index, write_index, write_source
from targets import SOURCES


DATA_DIR = "data"
FETCH_TIMEOUT = 30

HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


def fetch(url: str) -> str:
    r = requests.get(url, headers=HEADERS, timeout=FETCH_TIMEOUT, allow_redirects=True)
    r.raise_for_status()
    return r.text


def _short(e: Exception, limit: int = 160) -> str:
    return str(e).replace('"', "'").replace("\n", " ")[:limit]


def collect_source(source: dict) -> dict:
    """1ソース分の 取得 → 解析。失敗してもソース単位で空の結果を返す（例外は外に出さない）。

    ファイル書き込みはしない（スレッドから呼ばれるため）。
    """
    result = {"source": source, "buckets": [], "notices": [], "stage": "parse", "error": ""}
    try:
        raw = fetch(source["url"])
    except Exception as e:
        result.update(stage="fetch", error=_short(e))
        return result

    try:
        buckets, notices = classify(raw, source)
    except Exception as e:
        result.update(stage="parse", error=_short(e))
        return result

    result.update(buckets=buckets, notices=notices)
    return result


def report_health(result: dict) -> None:
    name = result["source"]["service"]
    stage = result["stage"]
    if result["error"]:
        print(f'[HEALTH] FAIL name="{name}" stage={stage} error="{result["error"]}"')
        print(f"[{name}] 取得/解析失敗（今回はスキップ） -> {result['error']}")
    elif not result["buckets"] and not result["notices"]:
        print(f'[HEALTH] SKIP name="{name}" stage={stage} reason="no matching sections"')
    else:
        print(f'[HEALTH] OK name="{name}" stage={stage}')
        print(f"[{name}] {len(result['buckets'])} buckets / {len(result['notices'])} notices")


def _stats_line(label: str, files: int, stats: dict) -> str:
    return (
        f"[SUMMARY] {label}: {files} files "
        f"(created={stats['created']}, updated={stats['updated']}, unchanged={stats['unchanged']})"
    )


def main(data_dir: str | None = None) -> dict:
    data_dir = data_dir or DATA_DIR

    # ソースは互いに独立なので取得・解析だけ並列に行い、書き込みは合流後に順番に行う
    with ThreadPoolExecutor(max_workers=len(SOURCES)) as ex:
        results = list(ex.map(collect_source, SOURCES))

    for r in results:
        report_health(r)

    if sum(len(r["buckets"]) for r in results) == 0:
        print("[SUMMARY] 全ソースで更新を取得できなかったため fallback データを生成")
        return generate_fallback(data_dir)

    data_files = []
    total_notices = 0
    update_stats = {"created": 0, "updated": 0, "unchanged": 0}
    notice_stats = {"created": 0, "updated": 0, "unchanged": 0}
    written_buckets = 0
    written_notices = 0

    for r in results:
        out = write_source(data_dir, r["source"], r["buckets"], r["notices"])
        data_files.extend(out["data_files"])
        total_notices += len(out["notice_files"])
        for k in update_stats:
            update_stats[k] += out["update_stats"][k]
            notice_stats[k] += out["notice_stats"][k]
        written_buckets += len(r["buckets"])
        written_notices += len(r["notices"])

    index = build_index(data_files, total_notices, [s["service"] for s in SOURCES])
    index_status = write_index(data_dir, index)

    print(_stats_line("Updates", written_buckets, update_stats))
    print(_stats_line("Notices", written_notices, notice_stats))
    print(f"[SUMMARY] index.json : {STATUS_LABELS[index_status]}")
    print(
        f"[SUMMARY] Total: {index['totalUpdates']} updates across {index['totalFiles']} files, "
        f"{index['totalMonths']} months, {index['totalNotices']} notices"
    )
    return index


def cli(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Cloud what's-new tracker: scrape the configured sources and write data/ JSON"
    )
    parser.parse_args(argv)

    try:
        main()
    except Exception as e:
        # 想定外の例外でも、まず fallback で表示側が空にならないようにする
        print(f"[ERROR] パイプラインが異常終了 -> {e}")
        try:
            generate_fallback(DATA_DIR)
        except Exception as e2:
            print(f"[ERROR] fallback 生成にも失敗 -> {e2}")
            return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(cli())
