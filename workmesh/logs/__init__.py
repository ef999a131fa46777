"""
Structured logging pipeline: ingestion, retention and queries.
"""
from .entries import LogLevel, LogEntry, LogBatch
from .batches import BatchStore
from .pipeline import LogPipeline, ComponentLogger
from .retention import RetentionManager, RetentionReport
from .query import QueryEngine, LogFilter, LogPage, LogAggregate
from .export import export_batch, import_batch
from .scheduler import Ticker
from .perf import measure
from .console import configure_logging

__all__ = [
    'LogLevel',
    'LogEntry',
    'LogBatch',
    'BatchStore',
    'LogPipeline',
    'ComponentLogger',
    'RetentionManager',
    'RetentionReport',
    'QueryEngine',
    'LogFilter',
    'LogPage',
    'LogAggregate',
    'export_batch',
    'import_batch',
    'Ticker',
    'measure',
    'configure_logging',
]
