from __future__ import annotations

import pytest
from conftest import api_error

from teardown.retry import RetryPolicy, RetryTimeout, retry_until, retry_with_count, run_with_policy


def _failing(err, calls):
    def fn():
        calls.append(1)
        raise err

    return fn


def test_not_found_short_circuits_attempts() -> None:
    calls, slept = [], []
    assert retry_with_count(_failing(api_error(404), calls), attempts=3, sleep=slept.append) is None
    assert len(calls) == 1
    assert slept == []


def test_transient_error_uses_all_attempts_then_raises_last() -> None:
    calls, slept = [], []
    with pytest.raises(Exception) as exc:
        retry_with_count(_failing(api_error(500, "boom"), calls), attempts=3, interval=2.0, sleep=slept.append)
    assert exc.value.status == 500
    assert len(calls) == 3
    assert slept == [2.0, 2.0]


def test_permission_errors_are_not_retried() -> None:
    calls = []
    with pytest.raises(Exception) as exc:
        retry_with_count(_failing(api_error(403), calls), sleep=lambda s: None)
    assert exc.value.status == 403
    assert len(calls) == 1


def test_recovers_after_transient_failure() -> None:
    calls = []

    def fn():
        calls.append(1)
        if len(calls) < 2:
            raise api_error(503)
        return "ok"

    assert retry_with_count(fn, sleep=lambda s: None) == "ok"
    assert len(calls) == 2


def test_retry_until_gives_up_on_endless_conflicts() -> None:
    calls = []
    with pytest.raises(RetryTimeout) as exc:
        retry_until(_failing(api_error(409), calls), timeout=0.0, interval=2.0, sleep=lambda s: None)
    assert len(calls) == 1
    assert exc.value.last_error.status == 409


def test_retry_until_waits_out_conflicts() -> None:
    calls, slept = [], []

    def fn():
        calls.append(1)
        if len(calls) < 3:
            raise api_error(409)
        return "ok"

    assert retry_until(fn, timeout=60.0, interval=2.0, sleep=slept.append) == "ok"
    assert slept == [2.0, 2.0]


def test_retry_until_raises_other_errors_at_once() -> None:
    calls = []
    with pytest.raises(Exception) as exc:
        retry_until(_failing(api_error(500), calls), sleep=lambda s: None)
    assert exc.value.status == 500
    assert len(calls) == 1


def test_already_exists_is_not_a_conflict() -> None:
    calls = []
    err = api_error(409, "Conflict", '{"reason":"AlreadyExists"}')
    with pytest.raises(Exception):
        retry_until(_failing(err, calls), sleep=lambda s: None)
    assert len(calls) == 1


def test_policy_picks_the_retry_shape() -> None:
    calls = []
    with pytest.raises(RetryTimeout):
        # timeout set: bounded by duration, not attempts
        run_with_policy(_failing(api_error(409), calls), RetryPolicy(timeout=0.0, interval=1.0), sleep=lambda s: None)
    assert len(calls) == 1


def test_zero_attempts_is_rejected() -> None:
    with pytest.raises(ValueError):
        retry_with_count(lambda: "ok", attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(attempts=0)
