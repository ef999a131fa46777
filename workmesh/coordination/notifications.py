"""
Per-worker notification channels.

The coordinator pushes assignment, cancellation and requeue notices; each
worker drains its own channel. Delivery is in order per worker.
"""
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

ASSIGNMENT = "assignment"
CANCEL = "cancel"
REQUEUE = "requeue"


@dataclass
class Notification:
    """Message from the coordinator to one worker."""
    worker_id: str
    kind: str  # 'assignment', 'cancel', 'requeue'
    item_id: str
    content: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "kind": self.kind,
            "item_id": self.item_id,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Notification':
        return cls(
            worker_id=data["worker_id"],
            kind=data["kind"],
            item_id=data["item_id"],
            content=data.get("content", {}),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


class NotificationHub:
    """One FIFO channel per worker id."""

    def __init__(self):
        self._channels: Dict[str, "queue.Queue[Notification]"] = {}
        self._lock = threading.Lock()

    def channel(self, worker_id: str) -> "queue.Queue[Notification]":
        with self._lock:
            channel = self._channels.get(worker_id)
            if channel is None:
                channel = self._channels[worker_id] = queue.Queue()
            return channel

    def send(self, notification: Notification) -> None:
        self.channel(notification.worker_id).put(notification)

    def notify(self, worker_id: str, kind: str, item_id: str, **content: Any) -> Notification:
        notification = Notification(worker_id=worker_id, kind=kind, item_id=item_id, content=content)
        self.send(notification)
        return notification

    def poll(self, worker_id: str, timeout: Optional[float] = None) -> Optional[Notification]:
        """
        Next notification for a worker. Non-blocking when timeout is None or 0.
        """
        channel = self.channel(worker_id)
        try:
            if not timeout:
                return channel.get_nowait()
            return channel.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self, worker_id: str) -> List[Notification]:
        drained = []
        while True:
            notification = self.poll(worker_id)
            if notification is None:
                return drained
            drained.append(notification)

    def close(self, worker_id: str) -> None:
        with self._lock:
            self._channels.pop(worker_id, None)
