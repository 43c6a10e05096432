#!/usr/bin/env python3
"""CLI runner for the recalls -> DynamoDB pipeline.

Usage examples:

# run every stage (fetch, expand, clean, upload)
python scripts/run_pipeline.py --all

# dry run of the upload: writes _raw/{category}-DEBUG.json, nothing is sent
python scripts/run_pipeline.py --dry

# empty the table, then reload it without prompts
python scripts/run_pipeline.py --clear --all --yes

# run under Prefect orchestration
python scripts/run_pipeline.py --all --prefect --yes

With no stage flag an interactive menu is shown.
"""
import argparse
import sys
import logging
import os

# Ensure project root is on sys.path so `from config import ...` works when
# the script is executed from a different working directory.
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

from config import CATEGORIES

MENU = """No command selected, please choose one of the following:
[1] Pull down recent recall data from the recalls API
[2] Transform captured recent data into detailed data
[3] Clean HTML from data
[4] Upload to DynamoDB
[5] Perform a dry run of uploading to DynamoDB
[6] Delete all items from the DynamoDB table
[e|exit] Exits
[a|all] Runs through entire process, ending with a dry run of the upload
--->  """

MENU_CHOICES = {
    "1": {"recent"},
    "2": {"full"},
    "3": {"clean"},
    "4": {"upload"},
    "5": {"upload", "dry"},
    "6": {"clear"},
    "a": {"recent", "full", "clean", "upload", "dry"},
    "all": {"recent", "full", "clean", "upload", "dry"},
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Load recall data into DynamoDB")
    parser.add_argument("--recent", action="store_true", help="Pull recent recall listings")
    parser.add_argument("--full", action="store_true", help="Expand listings into detailed recalls")
    parser.add_argument("--clean", action="store_true", help="Strip HTML from staged recalls")
    parser.add_argument("--upload", action="store_true", help="Upload cleaned recalls to DynamoDB")
    parser.add_argument("--dry", action="store_true", help="Write upload requests to disk instead of sending them")
    parser.add_argument("--clear", action="store_true", help="Delete every item from the DynamoDB table first")
    parser.add_argument("--all", action="store_true", help="Run every stage (not dry)")
    parser.add_argument("--categories", type=int, nargs="+", default=CATEGORIES, choices=CATEGORIES,
                        help="Recall categories to process")
    parser.add_argument("--yes", action="store_true", help="Answer yes to table creation and clearing prompts")
    parser.add_argument("--prefect", action="store_true", help="Run the stages as a Prefect flow")
    return parser


def selected_stages(args) -> set:
    if args.all:
        return {"recent", "full", "clean", "upload"} | ({"clear"} if args.clear else set())
    stages = {name for name in ("clear", "recent", "full", "clean", "upload", "dry") if getattr(args, name)}
    if "dry" in stages:
        stages.add("upload")
    return stages


def choose_from_menu(input_fn=input) -> set | None:
    """Prompt until a valid choice is made. Returns None on exit."""
    while True:
        choice = input_fn(MENU).strip().lower()
        if choice in ("e", "exit"):
            return None
        if choice in MENU_CHOICES:
            return set(MENU_CHOICES[choice])
        print("Invalid choice...")


def run_sequential(stages: set, categories: list, confirm=None) -> list:
    from ingest_recalls import get_recent_data, get_full_data
    from clean_recalls import clean_data
    from load_dynamo import start_loading, prompt_confirmation
    from clear_table import clear_table

    confirm = confirm or prompt_confirmation
    lines = []
    if "clear" in stages:
        lines.append(f"[clear] {clear_table(confirm=confirm).summary()}")
    if "recent" in stages:
        lines += [r.summary() for r in get_recent_data(categories)]
    if "full" in stages:
        lines += [r.summary() for r in get_full_data(categories)]
    if "clean" in stages:
        lines += [r.summary() for r in clean_data(categories)]
    if "upload" in stages:
        outcomes = start_loading(categories, dry_run="dry" in stages, confirm=confirm)
        lines += [f"[upload] category {c}: {o.summary()}" for c, o in outcomes.items()]
    return lines


def main(argv=None, input_fn=input) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
    args = build_parser().parse_args(argv)

    stages = selected_stages(args)
    if not stages:
        stages = choose_from_menu(input_fn)
        if stages is None:
            return 0

    confirm = (lambda message: True) if args.yes else None

    if args.prefect:
        try:
            from pipeline_prefect import run_pipeline
        except Exception as e:
            logging.error("Failed to import Prefect-based pipeline: %s", e)
            logging.error("If you don't have Prefect available, re-run without --prefect")
            raise
        logging.info(f"Running Prefect flow with stages={sorted(stages)}")
        run_pipeline(
            stages=[s for s in ("clear", "recent", "full", "clean", "upload") if s in stages],
            categories=args.categories,
            dry_run="dry" in stages,
            create_table=args.yes,
            confirm_clear=args.yes,
        )
        logging.info("Prefect pipeline run complete")
        return 0

    logging.info(f"Running sequential pipeline with stages={sorted(stages)}")
    for line in run_sequential(stages, args.categories, confirm):
        print(line)
    logging.info("Sequential pipeline complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
