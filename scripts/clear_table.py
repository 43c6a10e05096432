import os
import sys
import logging
from dataclasses import replace
from botocore.exceptions import BotoCoreError, ClientError
from config import TABLE_NAME, PARTITION_KEY, LOG_DIR
from load_dynamo import UploadEngine, get_dynamodb_client, prompt_confirmation
from outcomes import RunOutcome, Status, SubmissionError
from staging import ensure_dir

ensure_dir(LOG_DIR)

logging.basicConfig(
    filename=os.path.join(LOG_DIR, "clear.log"),
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s"
)


def scan_keys(client, table: str = TABLE_NAME, key_name: str = PARTITION_KEY):
    """Generator that yields the key of every item in `table`, still in
    DynamoDB attribute-value form."""
    paginator = client.get_paginator("scan")
    pages = paginator.paginate(
        TableName=table,
        ProjectionExpression="#k",
        ExpressionAttributeNames={"#k": key_name},
    )
    for page in pages:
        for item in page.get("Items", []):
            yield {key_name: item[key_name]}


def clear_table(table: str = TABLE_NAME, client=None, confirm=prompt_confirmation,
                key_name: str = PARTITION_KEY, **engine_options) -> RunOutcome:
    """Delete every item from `table` after confirmation.

    Deletes go through the same paced BatchWriteItem path as uploads, so
    unprocessed deletes are retried in waves.
    """
    if not confirm(f"Are you sure? This will delete all items in '{table}'. Continue?"):
        logging.info("ABORTING DELETE of '%s'", table)
        return RunOutcome(Status.ABORTED)

    if client is None:
        client = get_dynamodb_client()

    try:
        deletes = [{"DeleteRequest": {"Key": key}} for key in scan_keys(client, table, key_name)]
    except (ClientError, BotoCoreError) as e:
        logging.error("Could not scan '%s': %s", table, e)
        return RunOutcome(Status.UPLOAD_FAILED, error=SubmissionError("Scan", e))

    logging.info("Deleting %d items from '%s'", len(deletes), table)
    engine = UploadEngine.from_write_requests(deletes, table, client, "clear",
                                              confirm=confirm, key_name=key_name, **engine_options)
    outcome = engine.run()
    if outcome.status is Status.UPLOAD_COMPLETE:
        outcome = replace(outcome, status=Status.CLEAR_COMPLETE)
    logging.info("Clear of '%s': %s", table, outcome.summary())
    return outcome


if __name__ == "__main__":
    print(clear_table(confirm=(lambda message: True) if "--yes" in sys.argv else prompt_confirmation).summary())
