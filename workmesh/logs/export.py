"""
Export and import of log batches.

JSON is lossless and can be imported back. CSV is for spreadsheets only.
"""
import csv
import io
import json
from datetime import datetime

from .entries import LogBatch, LogEntry

CSV_COLUMNS = [
    "entry_id", "timestamp", "component", "level", "operation", "message",
    "correlation_id", "duration_ms", "memory_mb", "cpu_percent", "context",
]


def export_json(batch: LogBatch, indent: int = 2) -> str:
    payload = {
        "metadata": {
            "exported_at": datetime.now().isoformat(),
            "component": batch.component,
            "flushed_at": batch.flushed_at.isoformat(),
            "sequence": batch.sequence,
            "total_entries": len(batch.entries),
            "level_counts": batch.level_counts,
            "operation_counts": batch.operation_counts,
        },
        "entries": [entry.to_dict() for entry in batch.entries],
    }
    return json.dumps(payload, indent=indent, default=str)


def import_json(text: str) -> LogBatch:
    payload = json.loads(text)
    try:
        metadata = payload["metadata"]
        entries = tuple(LogEntry.from_dict(item) for item in payload["entries"])
        return LogBatch(
            component=metadata["component"],
            entries=entries,
            flushed_at=datetime.fromisoformat(metadata["flushed_at"]),
            sequence=metadata.get("sequence", 0),
        )
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Not a workmesh batch export: {exc}") from exc


def export_csv(batch: LogBatch) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS)
    writer.writeheader()
    for entry in batch.entries:
        row = entry.to_dict()
        row["context"] = json.dumps(row["context"], sort_keys=True, default=str)
        writer.writerow({column: row.get(column) for column in CSV_COLUMNS})
    return buffer.getvalue()


def export_batch(batch: LogBatch, fmt: str = "json") -> str:
    if fmt == "json":
        return export_json(batch)
    if fmt == "csv":
        return export_csv(batch)
    raise ValueError(f"Unsupported export format: {fmt}")


def import_batch(text: str) -> LogBatch:
    return import_json(text)
