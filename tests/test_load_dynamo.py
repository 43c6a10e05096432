"""
Unit tests for the upload engine, its progress ticker and the per-category loader
"""
import io
import json
import threading
import time

import pytest
from botocore.exceptions import WaiterError

from config import TABLE_NAME
from load_dynamo import CLEAR_LINE, ProgressTicker, UploadEngine, prompt_confirmation, start_loading
from outcomes import SubmissionError, Status, TableMissing

from conftest import FakeDynamo, client_error, make_records


def make_engine(records, client, sleep, console, tmp_path, **kwargs):
    kwargs.setdefault("confirm", lambda message: False)
    return UploadEngine(records, TABLE_NAME, client, 1,
                        sleep=sleep, stream=console, raw_dir=str(tmp_path), **kwargs)


def reject_first(n):
    """Response factory marking the first `n` requests of a batch unprocessed."""
    def respond(request_items):
        return {"UnprocessedItems": {TABLE_NAME: request_items[TABLE_NAME][:n]}}
    return respond


def test_single_request_upload(fake_dynamo, sleeps, console, tmp_path):
    outcome = make_engine(make_records(3), fake_dynamo, sleeps, console, tmp_path).run()

    assert outcome.status is Status.UPLOAD_COMPLETE
    assert outcome.waves == 1
    assert outcome.submitted == 3
    assert len(fake_dynamo.batches) == 1
    assert len(fake_dynamo.batches[0][TABLE_NAME]) == 3
    assert sleeps.calls == []


def test_multi_request_upload_is_paced(fake_dynamo, sleeps, console, tmp_path):
    outcome = make_engine(make_records(60), fake_dynamo, sleeps, console, tmp_path).run()

    assert outcome.status is Status.UPLOAD_COMPLETE
    assert [len(b[TABLE_NAME]) for b in fake_dynamo.batches] == [25, 25, 10]
    # Delay between consecutive requests only
    assert sleeps.calls == [1.5, 1.5]
    submitted_ids = [r["PutRequest"]["Item"]["recallId"]["S"] for b in fake_dynamo.batches for r in b[TABLE_NAME]]
    assert submitted_ids == [f"R{i}" for i in range(60)]


def test_unprocessed_items_retried_in_second_wave(sleeps, console, tmp_path):
    client = FakeDynamo(responses=[reject_first(3), None])

    outcome = make_engine(make_records(30), client, sleeps, console, tmp_path).run()

    assert outcome.status is Status.UPLOAD_COMPLETE
    assert outcome.waves == 2
    assert outcome.unprocessed == []
    assert len(client.batches) == 3
    retried = [r["PutRequest"]["Item"]["recallId"]["S"] for r in client.batches[2][TABLE_NAME]]
    assert retried == ["R0", "R1", "R2"]
    assert len(outcome.results) == 3
    assert outcome.submitted == 33
    # Pacing between wave-1 requests, then the first backoff step
    assert sleeps.calls == [1.5, 1.0]
    # Table listed once per session, not per wave
    assert client.list_calls == 1


def test_retry_wave_shares_client_and_skips_table_check(fake_dynamo, sleeps, console, tmp_path):
    engine = make_engine(make_records(2), fake_dynamo, sleeps, console, tmp_path)
    child = engine.retry_wave([{"PutRequest": {"Item": {"recallId": {"S": "R0"}}}}])

    assert child.client is engine.client
    assert child.table == engine.table
    assert child.wave == 2
    assert child.table_checked


def test_submission_error_aborts_remaining_requests(sleeps, console, tmp_path):
    client = FakeDynamo(responses=[client_error()])

    outcome = make_engine(make_records(30), client, sleeps, console, tmp_path).run()

    assert outcome.status is Status.UPLOAD_FAILED
    assert isinstance(outcome.error, SubmissionError)
    assert outcome.error.code == "ProvisionedThroughputExceededException"
    assert len(client.batches) == 1
    assert len(outcome.unprocessed) == 30
    assert console.getvalue().endswith(CLEAR_LINE)


def test_retry_waves_are_bounded(sleeps, console, tmp_path):
    client = FakeDynamo(default=reject_first(2))

    outcome = make_engine(make_records(5), client, sleeps, console, tmp_path, max_waves=3).run()

    assert outcome.status is Status.RETRIES_EXHAUSTED
    assert outcome.waves == 3
    assert len(client.batches) == 3
    assert len(outcome.unprocessed) == 2
    assert sleeps.calls == [1.0, 2.0]


def test_backoff_is_capped(sleeps, console, tmp_path):
    client = FakeDynamo(default=reject_first(1))

    make_engine(make_records(1), client, sleeps, console, tmp_path,
                max_waves=5, backoff=2.0, backoff_max=5.0).run()

    assert sleeps.calls == [2.0, 4.0, 5.0, 5.0]


def test_cancel_between_requests(fake_dynamo, console, tmp_path):
    cancel = threading.Event()

    def sleep(seconds):
        cancel.set()

    outcome = make_engine(make_records(60), fake_dynamo, sleep, console, tmp_path, cancel_event=cancel).run()

    assert outcome.status is Status.CANCELLED
    assert len(fake_dynamo.batches) == 1
    assert len(outcome.unprocessed) == 35


def test_dry_run_single_request(fake_dynamo, sleeps, console, tmp_path):
    outcome = make_engine(make_records(10), fake_dynamo, sleeps, console, tmp_path).run(dry_run=True)

    assert outcome.status is Status.DRY_RUN_COMPLETE
    assert fake_dynamo.batches == []
    assert outcome.debug_path == str(tmp_path / "1-DEBUG.json")
    written = json.loads((tmp_path / "1-DEBUG.json").read_text())
    assert list(written) == ["RequestItems"]
    assert len(written["RequestItems"][TABLE_NAME]) == 10


def test_dry_run_multi_request(fake_dynamo, sleeps, console, tmp_path):
    outcome = make_engine(make_records(30), fake_dynamo, sleeps, console, tmp_path).run(dry_run=True)

    assert outcome.status is Status.DRY_RUN_COMPLETE
    assert fake_dynamo.batches == []
    assert sleeps.calls == []
    written = json.loads((tmp_path / "1-DEBUG.json").read_text())
    assert isinstance(written, list)
    assert [len(r["RequestItems"][TABLE_NAME]) for r in written] == [25, 5]


def test_missing_table_declined(sleeps, console, tmp_path):
    client = FakeDynamo(tables=["SomethingElse"])

    outcome = make_engine(make_records(3), client, sleeps, console, tmp_path).run()

    assert outcome.status is Status.ABORTED
    assert isinstance(outcome.error, TableMissing)
    assert client.created == []
    assert client.batches == []


def test_missing_table_created_then_uploaded(sleeps, console, tmp_path):
    client = FakeDynamo(tables=[])
    asked = []

    def confirm(message):
        asked.append(message)
        return True

    outcome = make_engine(make_records(3), client, sleeps, console, tmp_path, confirm=confirm).run()

    assert len(asked) == 1
    assert TABLE_NAME in asked[0]
    created = client.created[0]
    assert created["TableName"] == TABLE_NAME
    assert created["KeySchema"] == [{"AttributeName": "recallId", "KeyType": "HASH"}]
    assert created["AttributeDefinitions"] == [{"AttributeName": "recallId", "AttributeType": "S"}]
    assert client.waiter.calls[0]["TableName"] == TABLE_NAME
    assert outcome.status is Status.UPLOAD_COMPLETE
    assert len(client.batches) == 1


def test_missing_table_created_without_waiting(sleeps, console, tmp_path):
    client = FakeDynamo(tables=[])

    outcome = make_engine(make_records(3), client, sleeps, console, tmp_path,
                          confirm=lambda message: True, wait_for_table=False).run()

    assert outcome.status is Status.TABLE_CREATION_PENDING
    assert len(client.created) == 1
    assert client.waiter.calls == []
    assert client.batches == []


def test_table_wait_gives_up(sleeps, console, tmp_path):
    error = WaiterError(name="TableExists", reason="Max attempts exceeded", last_response={})
    client = FakeDynamo(tables=[], waiter_error=error)

    outcome = make_engine(make_records(3), client, sleeps, console, tmp_path,
                          confirm=lambda message: True).run()

    assert outcome.status is Status.TABLE_CREATION_PENDING
    assert client.batches == []


def test_mapping_failures_reported_per_record(fake_dynamo, sleeps, console, tmp_path):
    records = make_records(4) + [{"title": "no id"}]

    outcome = make_engine(records, fake_dynamo, sleeps, console, tmp_path).run()

    assert outcome.status is Status.UPLOAD_COMPLETE
    assert outcome.submitted == 4
    assert len(outcome.mapping_errors) == 1


def test_empty_record_set(fake_dynamo, sleeps, console, tmp_path):
    outcome = make_engine([], fake_dynamo, sleeps, console, tmp_path).run()

    assert outcome.status is Status.UPLOAD_COMPLETE
    assert fake_dynamo.batches == []


def test_max_waves_must_be_positive(fake_dynamo, tmp_path):
    with pytest.raises(ValueError):
        UploadEngine([], TABLE_NAME, fake_dynamo, max_waves=0)


def test_ticker_writes_and_clears():
    stream = io.StringIO()
    ticker = ProgressTicker(stream, interval=0.01)

    with ticker:
        assert ticker.running
        time.sleep(0.1)

    assert not ticker.running
    output = stream.getvalue()
    assert "Loading data into table" in output
    assert output.endswith(CLEAR_LINE)


def test_ticker_stops_when_block_raises():
    stream = io.StringIO()
    ticker = ProgressTicker(stream, interval=0.01)

    with pytest.raises(RuntimeError):
        with ticker:
            raise RuntimeError("boom")

    assert not ticker.running
    assert stream.getvalue().endswith(CLEAR_LINE)


@pytest.mark.parametrize("answer,expected", [
    ("y", True), ("Yes", True), (" YES ", True), ("n", False), ("", False), ("yeah", False),
])
def test_prompt_confirmation(answer, expected):
    assert prompt_confirmation("Create?", input_fn=lambda prompt: answer) is expected


def test_prompt_confirmation_without_terminal():
    def no_input(prompt):
        raise EOFError

    assert prompt_confirmation("Create?", input_fn=no_input) is False


def test_start_loading_isolates_categories(sleeps, console, tmp_path):
    (tmp_path / "1-stripped.json").write_text(json.dumps(make_records(3)))
    (tmp_path / "3-stripped.json").write_text(json.dumps({"not": "a list"}))
    (tmp_path / "4-stripped.json").write_text(json.dumps(make_records(2, start=10)))
    client = FakeDynamo()

    outcomes = start_loading([1, 2, 3, 4], client=client, raw_dir=str(tmp_path),
                             sleep=sleeps, stream=console, confirm=lambda message: False)

    assert outcomes[1].status is Status.UPLOAD_COMPLETE
    assert outcomes[2].status is Status.UPLOAD_FAILED
    assert outcomes[3].status is Status.UPLOAD_FAILED
    assert outcomes[4].status is Status.UPLOAD_COMPLETE
    assert len(client.batches) == 2


def test_start_loading_dry_run(sleeps, console, tmp_path):
    (tmp_path / "2-stripped.json").write_text(json.dumps(make_records(3)))
    client = FakeDynamo()

    outcomes = start_loading([2], dry_run=True, client=client, raw_dir=str(tmp_path),
                             sleep=sleeps, stream=console)

    assert outcomes[2].status is Status.DRY_RUN_COMPLETE
    assert (tmp_path / "2-DEBUG.json").exists()
    assert client.batches == []


def test_cancel_before_retry_wave(console, tmp_path):
    cancel = threading.Event()
    client = FakeDynamo(default=reject_first(2))

    def sleep(seconds):
        # The backoff before wave 2 is the only pause
        cancel.set()

    outcome = make_engine(make_records(5), client, sleep, console, tmp_path, cancel_event=cancel).run()

    assert outcome.status is Status.CANCELLED
    assert outcome.waves == 1
    assert len(client.batches) == 1
    assert [r["PutRequest"]["Item"]["recallId"]["S"] for r in outcome.unprocessed] == ["R0", "R1"]


def test_submission_error_in_retry_wave_reaches_caller(sleeps, console, tmp_path):
    client = FakeDynamo(responses=[reject_first(2), client_error()])

    outcome = make_engine(make_records(5), client, sleeps, console, tmp_path).run()

    assert outcome.status is Status.UPLOAD_FAILED
    assert isinstance(outcome.error, SubmissionError)
    assert outcome.waves == 2
    assert len(client.batches) == 2
    assert len(outcome.results) == 1
    assert outcome.submitted == 5
    assert [r["PutRequest"]["Item"]["recallId"]["S"] for r in outcome.unprocessed] == ["R0", "R1"]
    assert console.getvalue().endswith(CLEAR_LINE)


def test_staged_numbers_reach_dynamo_exactly(fake_dynamo, sleeps, console, tmp_path):
    (tmp_path / "1-stripped.json").write_text('[{"recallId": "R1", "v": 3.14159265358979323846264}]')

    start_loading([1], client=fake_dynamo, raw_dir=str(tmp_path), sleep=sleeps, stream=console)

    item = fake_dynamo.batches[0][TABLE_NAME][0]["PutRequest"]["Item"]
    assert item["v"] == {"N": "3.14159265358979323846264"}
