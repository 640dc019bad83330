"""Application constants."""

USER_AGENT = "london-crime-cache/0.3 (+research; contact: configured-email)"
DEFAULT_API_URL = "https://data.police.uk/api/crimes-street/all-crime"
PUBLIC_CRS = "EPSG:4326"
PARTITION_FILE_TEMPLATE = "crime_data_{key}.parquet"
NO_OUTCOME = "investigation-incomplete"
EXIT_SUCCESS = 0
EXIT_PARTIAL = 10
EXIT_HARD_FAIL = 20
JSON_LOG_FIELDS = (
    "timestamp",
    "run_id",
    "stage",
    "partition",
    "area",
    "event",
    "status",
    "attempt",
    "duration_ms",
    "rows_in",
    "rows_out",
    "error_code",
    "message",
)
LEDGER_HEADERS = ["partition_key", "status", "record_count", "timestamp"]
