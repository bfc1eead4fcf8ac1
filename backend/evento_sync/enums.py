from enum import Enum


class TermKind(str, Enum):
    SPRING = "SPRING"
    AUTUMN = "AUTUMN"


class FetchMode(str, Enum):
    PAGINATED = "PAGINATED"
    DATE_CHUNKED = "DATE_CHUNKED"
    INCREMENTAL = "INCREMENTAL"
    CACHED = "CACHED"


class PageStatus(str, Enum):
    OK = "OK"
    RETRYABLE = "RETRYABLE"
    FATAL = "FATAL"


class CacheNamespace(str, Enum):
    API = "evento_api"
    PRODUCERS = "evento_producers"
    EVENTS = "evento_events"
    STATS = "evento_stats"


class CacheBackend(str, Enum):
    SQL = "sql"
    MEMORY = "memory"


class ProducerRunResult(str, Enum):
    UPDATED = "updated"
    ERROR = "error"
