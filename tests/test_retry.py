import pytest

from signbox_orchestrator.errors import NetworkError, NotFoundError
from signbox_orchestrator.retry import NO_RETRY, RetryPolicy


def test_retries_retryable_until_success():
    sleeps = []
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise NetworkError("down")
        return "ok"

    assert RetryPolicy(sleep=sleeps.append).call(flaky) == "ok"
    assert len(attempts) == 3
    assert len(sleeps) == 2
    assert sleeps[1] > sleeps[0] - 0.25  # exponential growth, within jitter


def test_non_retryable_raised_immediately():
    attempts = []

    def missing():
        attempts.append(1)
        raise NotFoundError("nope", status_code=404)

    with pytest.raises(NotFoundError):
        RetryPolicy(sleep=lambda s: None).call(missing)
    assert len(attempts) == 1


def test_custom_predicate_and_no_retry():
    attempts = []

    def boom():
        attempts.append(1)
        raise KeyError("x")

    with pytest.raises(KeyError):
        RetryPolicy(max_attempts=2, retryable=lambda e: isinstance(e, KeyError), sleep=lambda s: None).call(boom)
    assert len(attempts) == 2

    with pytest.raises(NetworkError):
        NO_RETRY.call(lambda: (_ for _ in ()).throw(NetworkError("down")))
