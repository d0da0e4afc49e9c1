"""Tests for WorkQueue."""

from __future__ import annotations

import threading

import pytest

from facebatch.execution.work_queue import QueueEmpty, WorkQueue


class TestWorkQueue:
    def test_fifo(self):
        q = WorkQueue([1, 2])
        q.put(3)
        assert [q.take(), q.take(), q.take()] == [1, 2, 3]

    def test_take_empty_raises(self):
        q: WorkQueue[int] = WorkQueue()
        assert q.is_empty()
        with pytest.raises(QueueEmpty):
            q.take()

    def test_drain(self):
        q = WorkQueue("abc")
        assert q.drain() == ["a", "b", "c"]
        assert len(q) == 0

    def test_repr(self):
        assert repr(WorkQueue([1])) == "WorkQueue(pending=1)"

    def test_concurrent_put_take(self):
        q: WorkQueue[int] = WorkQueue()
        taken: list[int] = []
        lock = threading.Lock()

        def producer(start):
            for i in range(start, start + 500):
                q.put(i)

        def consumer():
            while True:
                try:
                    item = q.take()
                except QueueEmpty:
                    return
                with lock:
                    taken.append(item)

        producers = [threading.Thread(target=producer, args=(n * 500,)) for n in range(4)]
        for t in producers:
            t.start()
        for t in producers:
            t.join()
        consumers = [threading.Thread(target=consumer) for _ in range(4)]
        for t in consumers:
            t.start()
        for t in consumers:
            t.join()

        assert sorted(taken) == list(range(2000))
