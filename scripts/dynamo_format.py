import logging
from decimal import Decimal
from boto3.dynamodb.types import TypeSerializer
from config import PARTITION_KEY, BATCH_LIMIT
from outcomes import MappingError

serializer = TypeSerializer()


def _to_dynamo_native(value):
    """TypeSerializer refuses floats; hand it Decimals instead."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, list):
        return [_to_dynamo_native(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_dynamo_native(v) for k, v in value.items()}
    return value


def map_record(record: dict, key_name: str = PARTITION_KEY) -> dict:
    """Convert one JSON record into DynamoDB attribute values.

    Examples:
        {"recallId": "A1"}          -> {"recallId": {"S": "A1"}}
        {"recallId": "A1", "n": 2}  -> {"recallId": {"S": "A1"}, "n": {"N": "2"}}

    Raises MappingError when the record has no usable partition key or a
    field cannot be represented.
    """
    if not isinstance(record, dict):
        raise MappingError(f"Record must be an object, got {type(record).__name__}")

    record_id = record.get(key_name)
    if not isinstance(record_id, str) or not record_id:
        raise MappingError(f"Record is missing a string '{key_name}'", record_id=record_id, field_name=key_name)

    item = {}
    for name, value in record.items():
        try:
            item[name] = serializer.serialize(_to_dynamo_native(value))
        except (TypeError, ValueError, ArithmeticError) as e:
            raise MappingError(f"Field '{name}' of {record_id} is not representable: {e}",
                               record_id=record_id, field_name=name) from e
    return item


def map_records(records, key_name: str = PARTITION_KEY):
    """Map records into PutRequest entries.

    Returns (write_requests, mapping_errors). A bad record is reported and
    skipped; the rest still load. Records repeating a key collapse into one
    entry (last value wins), since BatchWriteItem rejects duplicate keys.
    """
    by_key = {}
    errors = []
    for record in records:
        try:
            item = map_record(record, key_name)
        except MappingError as e:
            logging.warning("Skipping record: %s", e)
            errors.append(e)
            continue
        record_id = record[key_name]
        if record_id in by_key:
            logging.info("Duplicate %s %s, keeping the latest copy", key_name, record_id)
        by_key[record_id] = {"PutRequest": {"Item": item}}
    return list(by_key.values()), errors


def partition(items, limit: int = BATCH_LIMIT) -> list:
    """Split `items` into ordered chunks of at most `limit` entries.

    Input that fits within `limit` comes back as a single chunk equal to the
    input; an empty input yields no chunks.
    """
    if not 1 <= limit <= BATCH_LIMIT:
        raise ValueError(f"limit must be between 1 and {BATCH_LIMIT}, got {limit}")
    items = list(items)
    if len(items) <= limit:
        return [items] if items else []
    return [items[x:x + limit] for x in range(0, len(items), limit)]


def build_request(table: str, chunk: list) -> dict:
    return {"RequestItems": {table: list(chunk)}}
