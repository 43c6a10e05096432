import os
import base64
import simplejson
import logging
from config import RAW_DIR


def ensure_dir(path: str):
    try:
        os.makedirs(path, exist_ok=True)
    except FileExistsError:
        # A non-directory (file) exists at `path`; replace it with the
        # expected directory so later stage writes succeed.
        if os.path.isfile(path):
            os.remove(path)
            os.makedirs(path, exist_ok=True)
        else:
            raise


def raw_path(category, raw_dir: str = RAW_DIR) -> str:
    return os.path.join(raw_dir, f"{category}.json")


def stripped_path(category, raw_dir: str = RAW_DIR) -> str:
    return os.path.join(raw_dir, f"{category}-stripped.json")


def debug_path(category, raw_dir: str = RAW_DIR) -> str:
    return os.path.join(raw_dir, f"{category}-DEBUG.json")

def _json_default(value):
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, set):
        return sorted(value, key=str)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def read_stage(path: str):
    """Load a staged JSON file. Non-integer numbers are parsed as Decimal and
    written back verbatim by write_stage, so they reach DynamoDB's N type
    without binary rounding."""
    with open(path, "r", encoding="utf-8") as f:
        return simplejson.load(f, use_decimal=True)


def write_stage(path: str, data) -> str:
    ensure_dir(os.path.dirname(path) or ".")
    with open(path, "w", encoding="utf-8") as f:
        simplejson.dump(data, f, use_decimal=True, default=_json_default, ensure_ascii=False)
    logging.info("Wrote %s", path)
    return path
