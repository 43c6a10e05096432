import os
import logging

# Require Prefect to run the orchestrated pipeline. If Prefect is not
# available or raises at import time, fail fast with a helpful message so
# run environments use a compatible environment.
try:
    from prefect import flow, task, get_run_logger
except Exception as e:
    raise ImportError(
        "Prefect import failed. Install project dependencies (see pyproject.toml) "
        "and ensure a compatible Prefect/Pydantic combination is present. "
        f"Underlying error: {e}"
    )

from ingest_recalls import get_recent_data, get_full_data
from clean_recalls import clean_data
from load_dynamo import start_loading
from clear_table import clear_table
from config import CATEGORIES, LOG_DIR

os.makedirs(LOG_DIR, exist_ok=True)
logging.basicConfig(
    filename=os.path.join(LOG_DIR, "pipeline.log"),
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)

STAGES = ("recent", "full", "clean", "upload")


def _log_stage_results(logger, stage_results):
    for r in stage_results:
        if r.ok:
            logger.info(r.summary())
        else:
            logger.warning(r.summary())


@task
def task_clear(confirm_clear: bool = False):
    logger = get_run_logger()
    logger.info("Clearing the DynamoDB table…")
    outcome = clear_table(confirm=lambda message: confirm_clear)
    if outcome.ok:
        logger.info(outcome.summary())
    else:
        logger.warning(outcome.summary())
    return outcome


@task
def task_recent(categories: list):
    logger = get_run_logger()
    logger.info(f"Fetching recent recalls for categories {categories}…")
    stage_results = get_recent_data(categories)
    _log_stage_results(logger, stage_results)
    return stage_results


@task
def task_full(categories: list):
    logger = get_run_logger()
    logger.info("Expanding recalls into detailed records…")
    stage_results = get_full_data(categories)
    _log_stage_results(logger, stage_results)
    return stage_results


@task
def task_clean(categories: list):
    logger = get_run_logger()
    logger.info("Stripping markup…")
    stage_results = clean_data(categories)
    _log_stage_results(logger, stage_results)
    return stage_results


@task
def task_upload(categories: list, dry_run: bool = False, create_table: bool = False):
    logger = get_run_logger()
    logger.info(f"Uploading to DynamoDB (dry_run={dry_run})…")
    # No terminal under Prefect: table creation is decided by the flow parameter
    outcomes = start_loading(categories, dry_run=dry_run, confirm=lambda message: create_table)
    for category, outcome in outcomes.items():
        if outcome.ok:
            logger.info(f"Category {category}: {outcome.summary()}")
        else:
            logger.warning(f"Category {category}: {outcome.summary()}")
    return outcomes


@flow(name="recalls-dynamo-pipeline")
def run_pipeline(stages: list | None = None,
                 categories: list | None = None,
                 dry_run: bool = False,
                 create_table: bool = False,
                 confirm_clear: bool = False):
    """Run the selected stages under Prefect orchestration.

    Arguments:
        stages: subset of ("clear", "recent", "full", "clean", "upload"); all but
            "clear" by default.
        categories: recall categories to process (1-4).
        dry_run: write the upload request(s) to `{category}-DEBUG.json` instead of submitting.
        create_table: create the DynamoDB table if it is missing.
        confirm_clear: answer yes to the clear stage's confirmation.
    """
    stages = list(stages) if stages else list(STAGES)
    categories = list(categories) if categories else list(CATEGORIES)

    results = {}
    if "clear" in stages:
        results["clear"] = task_clear(confirm_clear)
    if "recent" in stages:
        results["recent"] = task_recent(categories)
    if "full" in stages:
        results["full"] = task_full(categories)
    if "clean" in stages:
        results["clean"] = task_clean(categories)
    if "upload" in stages:
        results["upload"] = task_upload(categories, dry_run, create_table)
    return results


if __name__ == "__main__":
    run_pipeline()
