# General project configuration
import os

RECALLS_API_BASE = "https://healthycanadians.gc.ca/recall-alert-rappel-avis/api"
RECALLS_LANG = "en"
# Recall categories exposed by the API (food, vehicles, health products, consumer products)
CATEGORIES = [1, 2, 3, 4]

# API paging
RECENT_LIMIT = 250                # Listing page size per category
REQUEST_TIMEOUT = 30
REQUESTS_PER_MIN = 180            # Be nice to the API
MAX_HTTP_RETRIES = 3              # Retries on 429/503 before giving up on a request

# Storage
RAW_DIR = os.getenv("RECALLS_RAW_DIR", "_raw")

# DynamoDB
TABLE_NAME = os.getenv("RECALLS_TABLE", "RecallsTestData-EN")
PARTITION_KEY = "recallId"
AWS_REGION = os.getenv("AWS_REGION")
DYNAMO_ENDPOINT = os.getenv("DYNAMO_ENDPOINT")   # e.g. http://localhost:8000 for DynamoDB Local
READ_CAPACITY_UNITS = 1
WRITE_CAPACITY_UNITS = 1

# Upload engine
BATCH_LIMIT = 25                  # BatchWriteItem hard limit
SUBMIT_DELAY_SECONDS = 1.5        # Pause between consecutive batch submissions
MAX_RETRY_WAVES = 8               # Waves over unprocessed items, including the first
RETRY_BACKOFF_SECONDS = 1.0
RETRY_BACKOFF_MAX_SECONDS = 30.0
PROGRESS_INTERVAL_SECONDS = 0.25
WAIT_FOR_TABLE = True
TABLE_WAIT_DELAY_SECONDS = 5
TABLE_WAIT_MAX_ATTEMPTS = 24

# Logging
LOG_DIR = "logs"
