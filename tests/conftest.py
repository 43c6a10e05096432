"""
Shared fixtures: an in-memory stand-in for the boto3 DynamoDB client.
"""
import io

import pytest
from botocore.exceptions import ClientError

from config import TABLE_NAME


class FakePaginator:
    def __init__(self, client):
        self.client = client

    def paginate(self, **kwargs):
        self.client.list_calls += 1
        # Two pages, like a long ListTables response
        names = list(self.client.tables)
        half = len(names) // 2
        yield {"TableNames": names[:half], "LastEvaluatedTableName": names[half - 1] if half else None}
        yield {"TableNames": names[half:]}


class FakeScanPaginator:
    def __init__(self, client, page_size=2):
        self.client = client
        self.page_size = page_size

    def paginate(self, **kwargs):
        self.client.scans.append(kwargs)
        if self.client.scan_error is not None:
            raise self.client.scan_error
        items = self.client.items
        for x in range(0, len(items), self.page_size):
            yield {"Items": items[x:x + self.page_size]}


class FakeWaiter:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def wait(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error


class FakeDynamo:
    """Records every BatchWriteItem call.

    `responses` are consumed one per call: a dict is returned as-is, a
    callable gets the RequestItems and returns the response, an exception
    is raised. Once exhausted, `default` is used (everything accepted unless
    given).
    """

    def __init__(self, tables=(TABLE_NAME,), responses=None, default=None, waiter_error=None,
                 items=None, scan_error=None):
        self.tables = list(tables)
        self.responses = list(responses or [])
        self.default = default
        self.batches = []
        self.created = []
        self.list_calls = 0
        self.waiter = FakeWaiter(waiter_error)
        self.items = list(items or [])
        self.scan_error = scan_error
        self.scans = []

    def get_paginator(self, name):
        if name == "scan":
            return FakeScanPaginator(self)
        assert name == "list_tables"
        return FakePaginator(self)

    def create_table(self, **kwargs):
        self.created.append(kwargs)
        return {"TableDescription": {"TableName": kwargs["TableName"], "TableStatus": "CREATING"}}

    def get_waiter(self, name):
        assert name == "table_exists"
        return self.waiter

    def batch_write_item(self, RequestItems):
        self.batches.append(RequestItems)
        resp = self.responses.pop(0) if self.responses else self.default
        if resp is None:
            return {"UnprocessedItems": {}}
        if isinstance(resp, Exception):
            raise resp
        if callable(resp):
            return resp(RequestItems)
        return resp


def client_error(code="ProvisionedThroughputExceededException", operation="BatchWriteItem"):
    return ClientError({"Error": {"Code": code, "Message": "simulated"}}, operation)


def make_records(n, start=0):
    return [{"recallId": f"R{i}", "title": f"Recall {i}", "category": 1} for i in range(start, start + n)]


@pytest.fixture
def fake_dynamo():
    return FakeDynamo()


@pytest.fixture
def sleeps():
    """A sleep replacement that records requested delays."""
    calls = []

    def sleep(seconds):
        calls.append(seconds)

    sleep.calls = calls
    return sleep


@pytest.fixture
def console():
    return io.StringIO()
