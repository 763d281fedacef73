import pytest

from kudos_deploy.errors import ApplyError, RunCancelled
from kudos_deploy.monitoring.poller import CheckResult, ReadinessPoller
from kudos_deploy.orchestration.cancellation import CancellationToken


def test_satisfied_on_first_call_never_sleeps(fake_poller, fake_clock):
    calls = []

    def predicate():
        calls.append(fake_clock())
        return CheckResult(True, "ready")

    result = fake_poller.poll(predicate, timeout=60, interval=5, description="ready")

    assert result.satisfied
    assert result.attempts == 1
    assert result.last_observation == "ready"
    assert calls == [0.0]
    assert fake_clock.sleeps == []


def test_attempt_count_bounded_by_timeout_over_interval(fake_poller, fake_clock):
    result = fake_poller.poll(lambda: CheckResult(False, "pending"), timeout=30, interval=10)

    assert not result.satisfied
    assert result.attempts == 4
    assert result.elapsed == 30
    assert result.last_observation == "pending"
    assert result.error is None


def test_never_sleeps_past_deadline(fake_poller, fake_clock):
    result = fake_poller.poll(lambda: False, timeout=25, interval=10)

    assert fake_clock.sleeps == [10, 10, 5]
    assert result.elapsed == 25
    assert result.attempts == 4


def test_zero_timeout_calls_predicate_once(fake_poller, fake_clock):
    result = fake_poller.poll(lambda: False, timeout=0, interval=5)

    assert result.attempts == 1
    assert not result.satisfied
    assert fake_clock.sleeps == []


def test_becomes_satisfied_mid_poll(fake_poller, fake_clock):
    answers = iter([False, False, True])

    result = fake_poller.poll(lambda: next(answers), timeout=100, interval=5)

    assert result.satisfied
    assert result.attempts == 3
    assert result.elapsed == 10


def test_transient_error_is_not_yet(fake_poller):
    outcomes = iter([ApplyError("not found yet", transient=True), CheckResult(True, 3)])

    def predicate():
        outcome = next(outcomes)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    result = fake_poller.poll(predicate, timeout=60, interval=5)

    assert result.satisfied
    assert result.attempts == 2
    assert result.last_observation == 3


def test_permanent_error_short_circuits(fake_poller, fake_clock):
    def predicate():
        raise ApplyError("image pull denied")

    result = fake_poller.poll(predicate, timeout=600, interval=5)

    assert not result.satisfied
    assert result.short_circuited
    assert result.attempts == 1
    assert result.error.message == "image pull denied"
    assert fake_clock.sleeps == []


def test_backoff_grows_interval_up_to_cap(fake_poller, fake_clock):
    fake_poller.poll(lambda: False, timeout=100, interval=5, backoff=2.0, max_interval=15)

    assert fake_clock.sleeps[:4] == [5, 10, 15, 15]


@pytest.mark.parametrize("timeout,interval", [(-1, 5), (10, 0)])
def test_rejects_invalid_bounds(fake_poller, timeout, interval):
    with pytest.raises(ValueError):
        fake_poller.poll(lambda: True, timeout=timeout, interval=interval)


def test_cancellation_stops_polling(fake_clock):
    token = CancellationToken()
    poller = ReadinessPoller(clock=fake_clock, sleep=fake_clock.sleep, cancel_token=token)
    attempts = []

    def predicate():
        attempts.append(1)
        if len(attempts) == 2:
            token.cancel("test")
        return False

    with pytest.raises(RunCancelled):
        poller.poll(predicate, timeout=100, interval=5)
    assert len(attempts) == 2
