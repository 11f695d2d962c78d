"""Tests for the circuit breaker."""

from tasksync.core.sync.circuit_breaker import CircuitBreaker, CircuitState


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_breaker(clock, threshold=3, cooldown=30.0):
    return CircuitBreaker(failure_threshold=threshold, cooldown=cooldown, clock=clock)


class TestCircuitBreaker:
    """Test state transitions."""

    def test_starts_closed(self):
        """A new breaker lets calls through."""
        breaker = make_breaker(FakeClock())
        assert breaker.state == CircuitState.CLOSED
        assert breaker.can_proceed()

    def test_opens_after_threshold(self):
        """Three consecutive failures open the circuit."""
        breaker = make_breaker(FakeClock())
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.can_proceed()

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert not breaker.can_proceed()

    def test_success_resets_count(self):
        """A success in between starts the count over."""
        breaker = make_breaker(FakeClock())
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.failures == 1
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_after_cooldown(self):
        """The circuit allows a trial once the cooldown has passed."""
        clock = FakeClock()
        breaker = make_breaker(clock)
        for _ in range(3):
            breaker.record_failure()

        clock.advance(29.9)
        assert not breaker.can_proceed()

        clock.advance(0.1)
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.can_proceed()

    def test_trial_success_closes(self):
        """A successful trial closes the circuit."""
        clock = FakeClock()
        breaker = make_breaker(clock)
        for _ in range(3):
            breaker.record_failure()
        clock.advance(30)
        assert breaker.can_proceed()

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failures == 0

    def test_trial_failure_reopens(self):
        """A failed trial opens the circuit for another cooldown."""
        clock = FakeClock()
        breaker = make_breaker(clock)
        for _ in range(3):
            breaker.record_failure()
        clock.advance(30)
        assert breaker.can_proceed()

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        clock.advance(10)
        assert not breaker.can_proceed()

    def test_reset(self):
        """reset forces the circuit closed."""
        breaker = make_breaker(FakeClock())
        for _ in range(3):
            breaker.record_failure()
        breaker.reset()
        assert breaker.can_proceed()
        assert breaker.failures == 0
