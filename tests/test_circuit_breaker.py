from intakedesk.circuit_breaker import CircuitBreaker


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _breaker(clock):
    return CircuitBreaker(failure_threshold=3, cooldown_seconds=60.0, label="test", clock=clock)


def test_stays_closed_below_threshold():
    cb = _breaker(FakeClock())
    cb.record_failure()
    cb.record_failure()
    assert cb.should_try()


def test_opens_at_threshold():
    cb = _breaker(FakeClock())
    for _ in range(3):
        cb.record_failure()
    assert not cb.should_try()


def test_half_open_after_cooldown():
    clock = FakeClock()
    cb = _breaker(clock)
    for _ in range(3):
        cb.record_failure()
    clock.now = 60.0
    assert cb.should_try()


def test_success_closes():
    clock = FakeClock()
    cb = _breaker(clock)
    for _ in range(3):
        cb.record_failure()
    clock.now = 61.0
    cb.record_success()
    assert cb.should_try()
    cb.record_failure()
    assert cb.should_try()


def test_failed_trial_restarts_cooldown():
    clock = FakeClock()
    cb = _breaker(clock)
    for _ in range(3):
        cb.record_failure()
    clock.now = 61.0
    assert cb.should_try()
    cb.record_failure()
    assert not cb.should_try()
    clock.now = 121.0
    assert cb.should_try()


def test_success_resets_count():
    cb = _breaker(FakeClock())
    cb.record_failure()
    cb.record_failure()
    cb.record_success()
    cb.record_failure()
    cb.record_failure()
    assert cb.should_try()
