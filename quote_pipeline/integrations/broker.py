from __future__ import annotations

import threading
import time
import zlib

from quote_pipeline.errors import PublishError


class InMemoryBroker:
    """Partitioned topics with per-consumer-group offsets.

    Records with the same key always land on the same partition, so a group
    sees them in publish order. Each group tracks its own offsets, so every
    group receives every record.

    Offsets are absolute. Once every group on a topic has read past a record
    it is released, and a partition never holds more than
    `max_records_per_partition` records; a group that falls behind that cap
    resumes from the oldest retained record.
    """

    def __init__(self, partitions: int = 3, *, max_records_per_partition: int = 10_000) -> None:
        if partitions < 1:
            raise ValueError("partitions must be >= 1")
        if max_records_per_partition < 1:
            raise ValueError("max_records_per_partition must be >= 1")
        self.partitions = partitions
        self.max_records_per_partition = max_records_per_partition
        self._cond = threading.Condition()
        self._logs: dict[str, list[list[dict]]] = {}
        self._base_offsets: dict[str, list[int]] = {}
        self._offsets: dict[tuple[str, str], list[int]] = {}
        self._closed = False

    def _topic_logs(self, topic: str) -> list[list[dict]]:
        logs = self._logs.get(topic)
        if logs is None:
            logs = [[] for _ in range(self.partitions)]
            self._logs[topic] = logs
            self._base_offsets[topic] = [0] * self.partitions
        return logs

    def _group_offsets(self, topic: str) -> list[list[int]]:
        return [offsets for (t, _group), offsets in self._offsets.items() if t == topic]

    def _release(self, topic: str, partition: int, upto: int) -> None:
        base = self._base_offsets[topic]
        count = upto - base[partition]
        if count <= 0:
            return
        del self._logs[topic][partition][:count]
        base[partition] = upto

    def _compact(self, topic: str) -> None:
        groups = self._group_offsets(topic)
        if not groups:
            return
        for partition in range(self.partitions):
            self._release(topic, partition, min(offsets[partition] for offsets in groups))

    def partition_for(self, key: str) -> int:
        return zlib.crc32(key.encode("utf-8")) % self.partitions

    def publish(self, topic: str, key: str, value: str) -> dict:
        with self._cond:
            if self._closed:
                raise PublishError("broker is closed")
            logs = self._topic_logs(topic)
            partition = self.partition_for(key)
            log = logs[partition]
            record = {
                "topic": topic,
                "partition": partition,
                "offset": self._base_offsets[topic][partition] + len(log),
                "key": key,
                "value": value,
                "ts": int(time.time()),
            }
            log.append(record)
            overflow = len(log) - self.max_records_per_partition
            if overflow > 0:
                self._release(topic, partition, self._base_offsets[topic][partition] + overflow)
            self._cond.notify_all()
            return record

    def _drain(self, topic: str, group_id: str, max_records: int) -> list[dict]:
        logs = self._topic_logs(topic)
        base = self._base_offsets[topic]
        offsets = self._offsets.setdefault((topic, group_id), list(base))
        out: list[dict] = []
        for partition, log in enumerate(logs):
            offsets[partition] = max(offsets[partition], base[partition])
            end = base[partition] + len(log)
            while offsets[partition] < end and len(out) < max_records:
                out.append(log[offsets[partition] - base[partition]])
                offsets[partition] += 1
        if out:
            self._compact(topic)
        return out

    def poll(
        self,
        topic: str,
        group_id: str,
        *,
        timeout: float = 1.0,
        max_records: int = 100,
    ) -> list[dict]:
        deadline = time.monotonic() + max(timeout, 0.0)
        with self._cond:
            while True:
                records = self._drain(topic, group_id, max_records)
                if records or self._closed:
                    return records
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return []
                self._cond.wait(remaining)

    def lag(self, topic: str, group_id: str) -> int:
        with self._cond:
            logs = self._topic_logs(topic)
            base = self._base_offsets[topic]
            offsets = self._offsets.get((topic, group_id), base)
            return sum(base[i] + len(log) - max(offsets[i], base[i]) for i, log in enumerate(logs))

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    def statistics(self) -> dict[str, int]:
        """Records currently retained per topic."""
        with self._cond:
            return {topic: sum(len(log) for log in logs) for topic, logs in self._logs.items()}
