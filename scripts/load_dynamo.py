import os
import re
import sys
import time
import logging
import threading
import boto3
from botocore.exceptions import BotoCoreError, ClientError, WaiterError
from config import (
    CATEGORIES,
    TABLE_NAME,
    PARTITION_KEY,
    AWS_REGION,
    DYNAMO_ENDPOINT,
    READ_CAPACITY_UNITS,
    WRITE_CAPACITY_UNITS,
    BATCH_LIMIT,
    SUBMIT_DELAY_SECONDS,
    MAX_RETRY_WAVES,
    RETRY_BACKOFF_SECONDS,
    RETRY_BACKOFF_MAX_SECONDS,
    PROGRESS_INTERVAL_SECONDS,
    WAIT_FOR_TABLE,
    TABLE_WAIT_DELAY_SECONDS,
    TABLE_WAIT_MAX_ATTEMPTS,
    RAW_DIR,
    LOG_DIR
)
from dynamo_format import map_records, partition, build_request
from outcomes import LoaderError, TableMissing, SubmissionError, RunOutcome, Status
from staging import ensure_dir, stripped_path, debug_path, read_stage, write_stage

ensure_dir(LOG_DIR)

logging.basicConfig(
    filename=os.path.join(LOG_DIR, "load.log"),
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s"
)

CLEAR_LINE = "\r\033[K"


def get_dynamodb_client():
    """One client per process; region and endpoint come from config."""
    return boto3.client("dynamodb", region_name=AWS_REGION, endpoint_url=DYNAMO_ENDPOINT)


def prompt_confirmation(message: str, input_fn=input) -> bool:
    """Ask a yes/no question on the terminal. Anything but y/yes is a no."""
    try:
        answer = input_fn(f"{message} [y/n] ")
    except EOFError:
        return False
    return re.match(r"^y(?:es)?$", answer.strip(), re.IGNORECASE) is not None


def table_definition(table: str, key_name: str = PARTITION_KEY) -> dict:
    return {
        "TableName": table,
        "KeySchema": [
            {"AttributeName": key_name, "KeyType": "HASH"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": key_name, "AttributeType": "S"},
        ],
        "ProvisionedThroughput": {
            "ReadCapacityUnits": READ_CAPACITY_UNITS,
            "WriteCapacityUnits": WRITE_CAPACITY_UNITS,
        },
    }


class ProgressTicker:
    """Rewrites a 'Loading data into table...' line every `interval` seconds
    on a background thread. Use as a context manager so the thread is joined
    and the line cleared however the block exits."""

    def __init__(self, stream=None, interval: float = PROGRESS_INTERVAL_SECONDS,
                 message: str = "Loading data into table"):
        self.stream = stream if stream is not None else sys.stdout
        self.interval = interval
        self.message = message
        self.dots = "..."
        self._stop = threading.Event()
        self._thread = None

    def _tick(self):
        self.dots = "" if len(self.dots) >= 3 else self.dots + "."
        self.stream.write(f"{CLEAR_LINE}{self.message}{self.dots}")
        self.stream.flush()

    def _loop(self):
        while not self._stop.wait(self.interval):
            self._tick()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="upload-progress", daemon=True)
        self._thread.start()
        return self

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self.stream.write(CLEAR_LINE)
        self.stream.flush()

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False


class UploadEngine:
    """Loads one set of records into a DynamoDB table with BatchWriteItem.

    Records are mapped to attribute values, split into batches of at most 25
    and submitted one batch at a time with a pause in between. Items the
    table hands back as unprocessed are driven through a fresh engine (a
    retry wave) on the same table and client, up to `max_waves` waves.

    :param records: recall records (plain JSON objects keyed by `key_name`)
    :param table: target table name
    :param client: boto3 DynamoDB client, shared with every retry wave
    :param category: tag used in log lines and the dry-run artifact name
    :param confirm: callable(message) -> bool asked before creating a table
    :param cancel_event: threading.Event checked between batches and waves
    :param sleep: pause function, injectable for tests
    """

    def __init__(self, records, table: str = TABLE_NAME, client=None, category=None, *,
                 confirm=prompt_confirmation,
                 cancel_event: threading.Event | None = None,
                 sleep=time.sleep,
                 stream=None,
                 key_name: str = PARTITION_KEY,
                 batch_limit: int = BATCH_LIMIT,
                 submit_delay: float = SUBMIT_DELAY_SECONDS,
                 max_waves: int = MAX_RETRY_WAVES,
                 backoff: float = RETRY_BACKOFF_SECONDS,
                 backoff_max: float = RETRY_BACKOFF_MAX_SECONDS,
                 progress_interval: float = PROGRESS_INTERVAL_SECONDS,
                 wait_for_table: bool = WAIT_FOR_TABLE,
                 raw_dir: str = RAW_DIR):
        if max_waves < 1:
            raise ValueError(f"max_waves must be at least 1, got {max_waves}")
        self.records = list(records)
        self.table = table
        self.client = client if client is not None else get_dynamodb_client()
        self.category = category
        self.confirm = confirm
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()
        self.sleep = sleep
        self.stream = stream
        self.key_name = key_name
        self.batch_limit = batch_limit
        self.submit_delay = submit_delay
        self.max_waves = max_waves
        self.backoff = backoff
        self.backoff_max = backoff_max
        self.progress_interval = progress_interval
        self.wait_for_table = wait_for_table
        self.raw_dir = raw_dir

        self.wave = 1
        self.table_checked = False
        # Ready-made write requests (retry waves, deletes); skips mapping
        self._carried = None

    @property
    def tag(self) -> str:
        return str(self.category) if self.category is not None else "upload"

    # Table check
    def list_tables(self) -> list:
        paginator = self.client.get_paginator("list_tables")
        names = []
        for page in paginator.paginate():
            names.extend(page.get("TableNames", []))
        return names

    def ensure_table(self) -> RunOutcome | None:
        """Return None when the table is ready, otherwise the outcome that
        ends this session."""
        try:
            tables = self.list_tables()
        except (ClientError, BotoCoreError) as e:
            logging.error("Could not list tables: %s", e)
            return RunOutcome(Status.UPLOAD_FAILED, error=SubmissionError("ListTables", e))
        self.table_checked = True

        if self.table in tables:
            return None

        missing = TableMissing(self.table)
        logging.warning(str(missing))
        if not self.confirm(f"Table, '{self.table}' can't be found, would you like to create it?"):
            logging.info("Table creation declined, aborting upload of category %s", self.tag)
            return RunOutcome(Status.ABORTED, error=missing)

        try:
            self.client.create_table(**table_definition(self.table, self.key_name))
        except (ClientError, BotoCoreError) as e:
            logging.error("Could not create table '%s': %s", self.table, e)
            return RunOutcome(Status.UPLOAD_FAILED, error=SubmissionError("CreateTable", e))
        logging.info("Requested creation of table '%s'", self.table)

        manual_check = (f"Please check that '{self.table}' has been created in the DynamoDB "
                        "dashboard before uploading again.")
        if not self.wait_for_table:
            logging.warning(manual_check)
            return RunOutcome(Status.TABLE_CREATION_PENDING, error=missing)

        try:
            waiter = self.client.get_waiter("table_exists")
            waiter.wait(
                TableName=self.table,
                WaiterConfig={"Delay": TABLE_WAIT_DELAY_SECONDS, "MaxAttempts": TABLE_WAIT_MAX_ATTEMPTS},
            )
        except WaiterError as e:
            logging.warning("Table '%s' did not become active: %s. %s", self.table, e, manual_check)
            return RunOutcome(Status.TABLE_CREATION_PENDING, error=missing)

        logging.info("Table '%s' is active", self.table)
        return None

    # Run
    def run(self, dry_run: bool = False) -> RunOutcome:
        if not self.table_checked:
            outcome = self.ensure_table()
            if outcome is not None:
                return outcome

        if self._carried is not None:
            write_requests, mapping_errors = self._carried, []
        else:
            write_requests, mapping_errors = map_records(self.records, self.key_name)

        chunks = partition(write_requests, self.batch_limit)
        if len(chunks) > 1:
            logging.info("Large request detected, chunking %d items into %d requests",
                         len(write_requests), len(chunks))

        if dry_run:
            outcome = self.write_debug(chunks)
        else:
            outcome = self.submit(chunks)
        outcome.mapping_errors = mapping_errors + outcome.mapping_errors
        return outcome

    def write_debug(self, chunks: list) -> RunOutcome:
        path = debug_path(self.tag, self.raw_dir)
        if len(chunks) > 1:
            payload = [build_request(self.table, chunk) for chunk in chunks]
        else:
            payload = build_request(self.table, chunks[0] if chunks else [])
        logging.info("Dry run enabled, writing request object to '%s'", path)
        write_stage(path, payload)
        return RunOutcome(Status.DRY_RUN_COMPLETE, debug_path=path)

    def submit(self, chunks: list) -> RunOutcome:
        if not chunks:
            logging.info("Nothing to upload for category %s", self.tag)
            return RunOutcome(Status.UPLOAD_COMPLETE, waves=self.wave - 1)

        results = []
        unprocessed = []
        submitted = 0

        with ProgressTicker(self.stream, self.progress_interval):
            for n, chunk in enumerate(chunks):
                if n:
                    self.sleep(self.submit_delay)
                if self.cancel_event.is_set():
                    logging.warning("Upload of category %s cancelled before request %d of %d",
                                    self.tag, n + 1, len(chunks))
                    pending = unprocessed + [req for rest in chunks[n:] for req in rest]
                    return RunOutcome(Status.CANCELLED, results, self.wave, submitted, pending)

                try:
                    response = self.client.batch_write_item(**build_request(self.table, chunk))
                except (ClientError, BotoCoreError) as e:
                    logging.error("Error inserting data for category %s (wave %d, request %d): %s",
                                  self.tag, self.wave, n + 1, e)
                    pending = unprocessed + [req for rest in chunks[n:] for req in rest]
                    return RunOutcome(Status.UPLOAD_FAILED, results, self.wave, submitted, pending,
                                      error=SubmissionError("BatchWriteItem", e))

                results.append(response)
                submitted += len(chunk)
                unprocessed.extend(response.get("UnprocessedItems", {}).get(self.table, []))

        logging.info("Data insertion complete for category %s: wave %d, %d items in %d requests",
                     self.tag, self.wave, submitted, len(chunks))

        if not unprocessed:
            return RunOutcome(Status.UPLOAD_COMPLETE, results, self.wave, submitted)

        logging.warning("%d items were unprocessed by DynamoDB in wave %d", len(unprocessed), self.wave)
        if self.wave >= self.max_waves:
            logging.error("Giving up on %d items after %d waves", len(unprocessed), self.wave)
            return RunOutcome(Status.RETRIES_EXHAUSTED, results, self.wave, submitted, unprocessed)

        self.sleep(min(self.backoff * 2 ** (self.wave - 1), self.backoff_max))
        if self.cancel_event.is_set():
            logging.warning("Upload of category %s cancelled before retry wave %d", self.tag, self.wave + 1)
            return RunOutcome(Status.CANCELLED, results, self.wave, submitted, unprocessed)

        child = self.retry_wave(unprocessed).run(dry_run=False)
        return RunOutcome(
            child.status,
            results + child.results,
            child.waves,
            submitted + child.submitted,
            child.unprocessed,
            error=child.error,
        )

    @classmethod
    def from_write_requests(cls, write_requests: list, table: str = TABLE_NAME, client=None,
                            category=None, **options) -> "UploadEngine":
        """An engine over ready-made PutRequest/DeleteRequest entries. The
        records are not mapped again and the table check is skipped."""
        engine = cls([], table, client, category, **options)
        engine.table_checked = True
        engine._carried = list(write_requests)
        return engine

    def retry_wave(self, write_requests: list) -> "UploadEngine":
        """A new engine over the unprocessed requests of this wave."""
        child = self.from_write_requests(
            write_requests, self.table, self.client, self.category,
            confirm=self.confirm,
            cancel_event=self.cancel_event,
            sleep=self.sleep,
            stream=self.stream,
            key_name=self.key_name,
            batch_limit=self.batch_limit,
            submit_delay=self.submit_delay,
            max_waves=self.max_waves,
            backoff=self.backoff,
            backoff_max=self.backoff_max,
            progress_interval=self.progress_interval,
            wait_for_table=self.wait_for_table,
            raw_dir=self.raw_dir,
        )
        child.wave = self.wave + 1
        return child


def start_loading(categories: list | None = None, dry_run: bool = False, client=None,
                  raw_dir: str = RAW_DIR, table: str = TABLE_NAME, **engine_options) -> dict:
    """Upload `{raw_dir}/{i}-stripped.json` for each category.

    Returns {category: RunOutcome}. A category that cannot be read or fails
    to upload does not stop the others.
    """
    if categories is None:
        categories = CATEGORIES

    outcomes = {}
    for category in categories:
        path = stripped_path(category, raw_dir)
        try:
            data = read_stage(path)
        except (OSError, ValueError) as e:
            logging.error("Error reading %s: %s", path, e)
            outcomes[category] = RunOutcome(Status.UPLOAD_FAILED, error=LoaderError(f"cannot read {path}: {e}"))
            continue
        if not isinstance(data, list):
            outcomes[category] = RunOutcome(Status.UPLOAD_FAILED,
                                            error=LoaderError(f"{path} does not hold a list of recalls"))
            continue

        if client is None:
            client = get_dynamodb_client()
        engine = UploadEngine(data, table, client, category, raw_dir=raw_dir, **engine_options)
        outcome = engine.run(dry_run=dry_run)
        logging.info("Category %s: %s", category, outcome.summary())
        outcomes[category] = outcome

    return outcomes


if __name__ == "__main__":
    start_loading(dry_run="--dry" in sys.argv)
