import os
import re
import logging
from config import CATEGORIES, RAW_DIR, LOG_DIR
from outcomes import StageResult
from staging import ensure_dir, raw_path, stripped_path, read_stage, write_stage

ensure_dir(LOG_DIR)

logging.basicConfig(
    filename=os.path.join(LOG_DIR, "clean.log"),
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s"
)

# Tag sequences and line breaks
MARKUP_RE = re.compile(r"(<([^>]+)>)|\r?\n|\r", re.IGNORECASE)


def strip_markup(data):
    """Recursively strip HTML tags and line breaks from every string in `data`.

    Lists and dicts are rebuilt rather than modified in place; numbers,
    booleans and None pass through unchanged.
    """
    if isinstance(data, str):
        return MARKUP_RE.sub("", data)
    if isinstance(data, list):
        return [strip_markup(v) for v in data]
    if isinstance(data, dict):
        return {k: strip_markup(v) for k, v in data.items()}
    return data


def clean_data(categories: list | None = None, raw_dir: str = RAW_DIR) -> list:
    """Read `{raw_dir}/{i}.json`, strip markup and write `{raw_dir}/{i}-stripped.json`."""
    if categories is None:
        categories = CATEGORIES

    stage_results = []
    for category in categories:
        try:
            data = read_stage(raw_path(category, raw_dir))
            if not isinstance(data, list):
                raise ValueError(f"expected a list of recalls, got {type(data).__name__}")
            cleaned = [strip_markup(item) for item in data]
            write_stage(stripped_path(category, raw_dir), cleaned)
        except (OSError, ValueError, TypeError) as e:
            logging.error("Error cleaning category %s: %s", category, e)
            stage_results.append(StageResult(category, "clean", False, error=e))
            continue

        logging.info(f"Cleaned {len(cleaned)} recalls for category {category}")
        stage_results.append(StageResult(category, "clean", True, len(cleaned)))

    return stage_results


if __name__ == "__main__":
    clean_data()
