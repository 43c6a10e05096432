import os
import time
import logging
import requests
from config import (
    RECALLS_API_BASE,
    RECALLS_LANG,
    CATEGORIES,
    RECENT_LIMIT,
    REQUEST_TIMEOUT,
    REQUESTS_PER_MIN,
    MAX_HTTP_RETRIES,
    RAW_DIR,
    LOG_DIR
)
from outcomes import FetchError, StageResult
from staging import ensure_dir, raw_path, read_stage, write_stage

ensure_dir(LOG_DIR)

logging.basicConfig(
    filename=os.path.join(LOG_DIR, "ingest.log"),
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s"
)

RETRY_PAUSE_SECONDS = 5


def _pace_seconds() -> float:
    return max(60.0 / REQUESTS_PER_MIN, 0.35)


def _get_json(url: str, params: dict | None = None, sleep=time.sleep):
    """GET `url` and decode the JSON body, pausing and retrying when the API
    answers 429/503."""
    attempt = 0
    while True:
        resp = requests.get(url, params=params, timeout=REQUEST_TIMEOUT)
        if resp.status_code == 200:
            return resp.json()

        logging.warning(f"HTTP {resp.status_code} at {url}: {resp.text[:200]}")
        if resp.status_code in (429, 503) and attempt < MAX_HTTP_RETRIES:
            attempt += 1
            sleep(RETRY_PAUSE_SECONDS)
            continue
        raise FetchError(url, resp.status_code)


def fetch_recent(category: int, limit: int = RECENT_LIMIT, lang: str = RECALLS_LANG, sleep=time.sleep) -> list:
    """Return the most recent recall summaries for one category (1-4)."""
    params = {"search": "", "lang": lang, "cat": category, "lim": limit, "off": 0}
    payload = _get_json(f"{RECALLS_API_BASE}/search", params=params, sleep=sleep)
    return payload.get("results", [])


def fetch_detail(recall_id: str, lang: str = RECALLS_LANG, sleep=time.sleep) -> dict:
    return _get_json(f"{RECALLS_API_BASE}/{recall_id}/{lang}", sleep=sleep)


def get_recent_data(categories: list | None = None, raw_dir: str = RAW_DIR, sleep=time.sleep) -> list:
    """Pull recent recall listings per category into `{raw_dir}/{i}.json`."""
    if categories is None:
        categories = CATEGORIES
    if not os.path.isdir(raw_dir):
        logging.info("No '%s' directory found, creating it now...", raw_dir)
    ensure_dir(raw_dir)

    stage_results = []
    for i, category in enumerate(categories):
        if i:
            sleep(_pace_seconds())
        try:
            recent = fetch_recent(category, sleep=sleep)
            write_stage(raw_path(category, raw_dir), recent)
        except (requests.RequestException, FetchError, ValueError) as e:
            logging.error("Error fetching recent data for category %s: %s", category, e)
            stage_results.append(StageResult(category, "recent", False, error=e))
            continue

        logging.info(f"Fetched {len(recent)} recent recalls for category {category}")
        stage_results.append(StageResult(category, "recent", True, len(recent)))

    return stage_results


def expand_record(item: dict, lang: str = RECALLS_LANG, sleep=time.sleep) -> dict:
    """Swap a listing summary for the full recall detail. The summary is kept
    when the detail cannot be fetched."""
    recall_id = item.get("recallId") if isinstance(item, dict) else None
    if not recall_id:
        logging.warning("Listing item without recallId, keeping summary: %r", item)
        return item
    try:
        return fetch_detail(recall_id, lang=lang, sleep=sleep)
    except (requests.RequestException, FetchError, ValueError) as e:
        logging.warning("Detail fetch failed for %s, keeping summary: %s", recall_id, e)
        return item


def get_full_data(categories: list | None = None, raw_dir: str = RAW_DIR, sleep=time.sleep) -> list:
    """Replace each staged listing in `{raw_dir}/{i}.json` with detailed records."""
    if categories is None:
        categories = CATEGORIES

    stage_results = []
    for category in categories:
        path = raw_path(category, raw_dir)
        try:
            data = read_stage(path)
        except (OSError, ValueError) as e:
            logging.error("Error reading %s: %s", path, e)
            stage_results.append(StageResult(category, "full", False, error=e))
            continue

        # Older staging files hold the raw listing payload rather than its results
        if isinstance(data, dict):
            data = data.get("results", [])

        detailed = []
        for n, item in enumerate(data):
            if n:
                sleep(_pace_seconds())
            detailed.append(expand_record(item, sleep=sleep))

        try:
            write_stage(path, detailed)
        except OSError as e:
            logging.error("Error writing %s: %s", path, e)
            stage_results.append(StageResult(category, "full", False, error=e))
            continue

        logging.info(f"Expanded {len(detailed)} recalls for category {category}")
        stage_results.append(StageResult(category, "full", True, len(detailed)))

    return stage_results


if __name__ == "__main__":
    get_recent_data()
    get_full_data()
