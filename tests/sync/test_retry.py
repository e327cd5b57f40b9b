"""
Tests for retry bookkeeping.
"""

from core.sync.retry import RetryQueue


class TestRetryQueue:

    def test_first_failure_has_one_attempt(self):
        queue = RetryQueue(max_attempts=3)
        entry = queue.record_failure("a.md", "boom")

        assert entry.attempts == 1
        assert entry.last_error == "boom"
        assert "a.md" in queue
        assert len(queue) == 1

    def test_attempts_increment(self):
        queue = RetryQueue(max_attempts=5)
        queue.record_failure("a.md", "one")
        entry = queue.record_failure("a.md", "two")

        assert entry.attempts == 2
        assert entry.last_error == "two"
        assert queue.get("a.md") is entry

    def test_ceiling_drops_entry(self):
        queue = RetryQueue(max_attempts=2)
        queue.record_failure("a.md")
        entry = queue.record_failure("a.md")

        assert entry.attempts == 2
        assert "a.md" not in queue
        assert [e.path for e in queue.permanent_failures] == ["a.md"]

    def test_success_clears_entry_and_permanent_failure(self):
        queue = RetryQueue(max_attempts=1)
        queue.record_failure("gone.md")
        queue.record_failure("b.md")
        queue.record_failure("c.md")
        queue.record_success("gone.md")

        assert [e.path for e in queue.permanent_failures] == ["b.md", "c.md"]

        queue = RetryQueue(max_attempts=3)
        queue.record_failure("a.md")
        queue.record_success("a.md")
        assert len(queue) == 0

    def test_snapshot_is_oldest_first(self):
        queue = RetryQueue()
        queue.record_failure("first.md")
        queue.record_failure("second.md")
        queue.record_failure("first.md")

        assert [e.path for e in queue.snapshot()] == ["first.md", "second.md"]

    def test_discard(self):
        queue = RetryQueue()
        queue.record_failure("a.md")
        queue.discard("a.md")
        queue.discard("never.md")

        assert len(queue) == 0
        assert queue.permanent_failures == []

    def test_permanent_failures_are_bounded(self):
        queue = RetryQueue(max_attempts=1, max_permanent_failures=2)
        for name in ("a.md", "b.md", "c.md"):
            queue.record_failure(name)

        assert [e.path for e in queue.permanent_failures] == ["b.md", "c.md"]
