"""
Append-only persistence of LogBatches on top of a KeyValueStore.
"""
import logging
from typing import Iterator, List, Optional

from ..storage import KeyValueStore
from .entries import LogBatch

logger = logging.getLogger(__name__)

BATCH_NAMESPACE = "log_batches"


class BatchStore:
    """Batches keyed by ``<component>/<flush timestamp>/<sequence>``."""

    def __init__(self, store: KeyValueStore, namespace: str = BATCH_NAMESPACE):
        self.store = store
        self.namespace = namespace

    def write(self, batch: LogBatch) -> str:
        self.store.append(self.namespace, batch.key, batch.to_dict())
        return batch.key

    def read(self, key: str) -> Optional[LogBatch]:
        record = self.store.get(self.namespace, key)
        return LogBatch.from_dict(record) if record is not None else None

    def keys(self) -> List[str]:
        return self.store.keys(self.namespace)

    def delete(self, key: str) -> bool:
        return self.store.delete(self.namespace, key)

    def __iter__(self) -> Iterator[LogBatch]:
        for key, record in self.store.items(self.namespace):
            try:
                yield LogBatch.from_dict(record)
            except (KeyError, ValueError, TypeError):
                logger.error("Skipping unreadable log batch %s", key, exc_info=True)

    def __len__(self) -> int:
        return len(self.keys())
