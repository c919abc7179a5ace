"""Tests for eval, apply, eval_async and post_digest."""

import pytest

from digestx import (
    AsyncTaskError,
    ManualScheduler,
    Phase,
    PostDigestTaskError,
    ReentrantPhaseError,
    Scope,
    set_scheduler,
    get_scheduler,
)


@pytest.fixture(autouse=True)
def restore_default_scheduler():
    """Keep the process-wide scheduler from leaking between tests."""
    old = get_scheduler()
    set_scheduler(None)
    yield
    set_scheduler(old)


def _count_digests(monkeypatch, scope):
    calls = []
    original = scope.digest

    def counting():
        calls.append(True)
        original()

    monkeypatch.setattr(scope, "digest", counting)
    return calls


class TestEval:
    def test_returns_result(self):
        scope = Scope()
        assert scope.eval(lambda s: 42) == 42

    def test_passes_scope_and_args(self):
        scope = Scope()
        assert scope.eval(lambda s, a, b: (s, a + b), 1, 2) == (scope, 3)

    def test_does_not_digest(self):
        scope = Scope()
        calls = []
        scope.watch(lambda s: 1, lambda new, old, s: calls.append(new))
        scope.eval(lambda s: None)
        assert calls == []
        assert scope.phase is None


class TestApply:
    def test_returns_result_and_digests(self):
        scope = Scope()
        state = {"x": 0}
        calls = []
        scope.watch(lambda s: state["x"], lambda new, old, s: calls.append((new, old)))
        scope.digest()

        result = scope.apply(lambda s: state.update(x=5) or "done")
        assert result == "done"
        assert calls == [(0, 0), (5, 0)]

    def test_phase_is_apply_while_evaluating(self):
        scope = Scope()
        seen = scope.apply(lambda s: s.phase)
        assert seen is Phase.APPLY
        assert scope.phase is None

    def test_failure_propagates_after_digest(self):
        scope = Scope()
        state = {"x": 0}
        calls = []
        scope.watch(lambda s: state["x"], lambda new, old, s: calls.append(new))

        def failing(s):
            state["x"] = 7
            raise ValueError("expr failed")

        with pytest.raises(ValueError, match="expr failed"):
            scope.apply(failing)

        assert calls == [7]
        assert scope.phase is None

    def test_failure_still_runs_post_digest(self):
        scope = Scope()
        ran = []
        scope.post_digest(lambda: ran.append(True))

        def failing(s):
            raise RuntimeError("nope")

        with pytest.raises(RuntimeError):
            scope.apply(failing)
        assert ran == [True]

    def test_nested_apply_is_rejected(self):
        scope = Scope()
        digests = []
        scope.post_digest(lambda: digests.append(True))

        with pytest.raises(ReentrantPhaseError) as info:
            scope.apply(lambda s: s.apply(lambda s: None))

        assert info.value.active is Phase.APPLY
        assert info.value.requested is Phase.APPLY
        assert digests == [True]  # outer apply still digested once
        assert scope.phase is None

    def test_digest_inside_apply_is_rejected(self):
        scope = Scope()
        with pytest.raises(ReentrantPhaseError):
            scope.apply(lambda s: s.digest())
        assert scope.phase is None


class TestEvalAsync:
    def test_runs_in_next_digest(self):
        scope = Scope()
        ran = []
        scope.eval_async(lambda s: ran.append(s))
        assert ran == []
        assert scope.pending_async_count == 1
        scope.digest()
        assert ran == [scope]
        assert scope.pending_async_count == 0

    def test_watchers_see_async_changes(self):
        scope = Scope()
        state = {"x": 0}
        calls = []
        scope.watch(lambda s: state["x"], lambda new, old, s: calls.append(new))
        scope.eval_async(lambda s: state.update(x=5))
        scope.digest()
        assert calls == [0, 5]

    def test_runs_in_fifo_order(self):
        scope = Scope()
        order = []
        for n in range(5):
            scope.eval_async(lambda s, n=n: order.append(n))
        scope.digest()
        assert order == [0, 1, 2, 3, 4]

    def test_schedules_exactly_one_digest(self, monkeypatch):
        scheduler = ManualScheduler()
        scope = Scope(scheduler)
        digests = _count_digests(monkeypatch, scope)
        ran = []

        for n in range(3):
            scope.eval_async(lambda s, n=n: ran.append(n))
        assert scheduler.pending == 1
        assert ran == []  # never synchronous

        scheduler.run_pending()
        assert ran == [0, 1, 2]
        assert digests == [True]
        assert scheduler.pending == 0

    def test_scheduled_digest_skipped_if_already_drained(self, monkeypatch):
        scheduler = ManualScheduler()
        scope = Scope(scheduler)
        scope.eval_async(lambda s: None)
        scope.digest()

        digests = _count_digests(monkeypatch, scope)
        scheduler.run_pending()
        assert digests == []

    def test_no_scheduling_during_digest(self):
        scheduler = ManualScheduler()
        scope = Scope(scheduler)
        ran = []
        scope.watch(lambda s: 1, lambda new, old, s: s.eval_async(lambda s: ran.append("async")))
        scope.digest()
        assert ran == ["async"]
        assert scheduler.pending == 0

    def test_no_scheduling_during_apply(self):
        scheduler = ManualScheduler()
        scope = Scope(scheduler)
        ran = []
        scope.apply(lambda s: s.eval_async(lambda s: ran.append("async")))
        assert ran == ["async"]
        assert scheduler.pending == 0

    def test_without_scheduler_waits_for_digest(self):
        scope = Scope()
        ran = []
        scope.eval_async(lambda s: ran.append(True))
        assert scope.pending_async_count == 1
        scope.digest()
        assert ran == [True]

    def test_uses_process_default_scheduler(self):
        scheduler = ManualScheduler()
        set_scheduler(scheduler)
        scope = Scope()
        ran = []
        scope.eval_async(lambda s: ran.append(True))
        assert scheduler.pending == 1
        scheduler.run_pending()
        assert ran == [True]

    def test_failure_is_reported_and_queue_continues(self):
        errors = []
        scope = Scope(error_handler=errors.append)
        ran = []

        def broken(s):
            raise KeyError("missing")

        scope.eval_async(broken)
        scope.eval_async(lambda s: ran.append(True))
        scope.digest()

        assert ran == [True]
        assert len(errors) == 1
        assert isinstance(errors[0], AsyncTaskError)
        assert errors[0].subject is broken

    def test_async_chain_within_ttl(self):
        scope = Scope()
        ran = []

        def step(s, n=0):
            ran.append(n)
            if n < 3:
                s.eval_async(lambda s: step(s, n + 1))

        scope.eval_async(step)
        scope.digest()
        assert ran == [0, 1, 2, 3]


class TestPostDigest:
    def test_runs_after_digest(self):
        scope = Scope()
        ran = []
        scope.post_digest(lambda: ran.append("post"))
        assert ran == []
        scope.digest()
        assert ran == ["post"]

    def test_runs_once(self):
        scope = Scope()
        ran = []
        scope.post_digest(lambda: ran.append("post"))
        scope.digest()
        scope.digest()
        assert ran == ["post"]
        assert scope.pending_post_digest_count == 0

    def test_runs_after_listeners_and_outside_phase(self):
        scope = Scope()
        order = []
        scope.watch(lambda s: 1, lambda new, old, s: order.append("listener"))
        scope.post_digest(lambda: order.append(("post", scope.phase)))
        scope.digest()
        assert order == ["listener", ("post", None)]

    def test_fifo_and_fault_isolated(self):
        errors = []
        scope = Scope(error_handler=errors.append)
        order = []

        def broken():
            raise RuntimeError("post failed")

        scope.post_digest(lambda: order.append(1))
        scope.post_digest(broken)
        scope.post_digest(lambda: order.append(2))
        scope.digest()

        assert order == [1, 2]
        assert [type(e) for e in errors] == [PostDigestTaskError]
        assert scope.pending_post_digest_count == 0

    def test_changes_are_seen_by_next_digest(self):
        scope = Scope()
        state = {"x": 0}
        calls = []
        scope.watch(lambda s: state["x"], lambda new, old, s: calls.append(new))
        scope.post_digest(lambda: state.update(x=1))
        scope.digest()
        assert calls == [0]
        scope.digest()
        assert calls == [0, 1]

    def test_can_start_a_new_apply(self):
        scope = Scope()
        ran = []
        scope.post_digest(lambda: scope.apply(lambda s: ran.append(s.phase)))
        scope.digest()
        assert ran == [Phase.APPLY]
