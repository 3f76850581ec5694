import pytest

from brand_scrub.config import Config
from brand_scrub.errors import Exhausted, MalformedResponse, ServiceUnavailable
from brand_scrub.retry import RetryPolicy


class Flaky:
    def __init__(self, failures, error=None, result="ok"):
        self.failures = failures
        self.error = error or ServiceUnavailable("503")
        self.result = result
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


def test_transient_failures_are_retried_with_doubling_delay(policy, sleeps):
    fn = Flaky(failures=2)
    assert policy.call(fn, description="detect") == "ok"
    assert fn.calls == 3
    assert sleeps == [1.0, 2.0]


def test_delay_is_capped_at_max_delay():
    sleeps = []
    policy = RetryPolicy(initial_delay=1.0, max_delay=3.0, multiplier=2.0, max_attempts=5, sleep=sleeps.append)
    with pytest.raises(Exhausted):
        policy.call(Flaky(failures=10))
    assert sleeps == [1.0, 2.0, 3.0, 3.0]


def test_malformed_response_is_not_retried(policy, sleeps):
    fn = Flaky(failures=5, error=MalformedResponse("not json"))
    with pytest.raises(MalformedResponse):
        policy.call(fn)
    assert fn.calls == 1
    assert sleeps == []


def test_exhaustion_reports_attempts_and_last_error(policy):
    error = ServiceUnavailable("overloaded")
    with pytest.raises(Exhausted) as info:
        policy.call(Flaky(failures=10, error=error), description="verify pass 1")
    assert info.value.attempts == 3
    assert info.value.last_error is error
    assert info.value.__cause__ is error
    assert "verify pass 1" in str(info.value)


def test_custom_retryable_predicate():
    policy = RetryPolicy(max_attempts=2, retryable=lambda e: isinstance(e, TimeoutError), sleep=lambda s: None)
    fn = Flaky(failures=1, error=TimeoutError("slow"))
    assert policy.call(fn) == "ok"


def test_arguments_are_forwarded(policy):
    assert policy.call(lambda a, b=0: a + b, 2, b=3) == 5


def test_from_config():
    config = Config(retry_initial_delay=0.5, retry_max_delay=4, retry_multiplier=3, retry_max_attempts=6)
    policy = RetryPolicy.from_config(config)
    assert (policy.initial_delay, policy.max_delay, policy.multiplier, policy.max_attempts) == (0.5, 4, 3, 6)
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [0.5, 1.5, 4]
