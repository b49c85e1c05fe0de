import pytest

from deep_memory.core.circuit_breaker import CircuitBreaker, CircuitState, RetryWithCircuitBreaker
from deep_memory.core.errors import CircuitOpenError, RateLimitError, ServiceUnavailableError, TransportError


class FakeMonotonic:
    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class Flaky:
    def __init__(self, failures: int, error: Exception | None = None):
        self.failures = failures
        self.error = error or ServiceUnavailableError("unavailable")
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def breaker(monotonic):
    return CircuitBreaker(
        name="test",
        failure_threshold=2,
        recovery_timeout=30.0,
        expected_exception_types=(TransportError,),
        clock=monotonic,
    )


@pytest.mark.asyncio
async def test_opens_after_threshold_and_rejects_fast(breaker):
    func = Flaky(failures=10)
    for _ in range(2):
        with pytest.raises(ServiceUnavailableError):
            await breaker.call_async(func)

    assert breaker.state is CircuitState.OPEN
    with pytest.raises(CircuitOpenError):
        await breaker.call_async(func)
    assert func.calls == 2


@pytest.mark.asyncio
async def test_half_open_success_closes(breaker, monotonic):
    func = Flaky(failures=2)
    for _ in range(2):
        with pytest.raises(ServiceUnavailableError):
            await breaker.call_async(func)

    monotonic.now += 30.0
    assert await breaker.call_async(func) == "ok"
    assert breaker.state is CircuitState.CLOSED
    assert breaker.failure_count == 0


@pytest.mark.asyncio
async def test_half_open_failure_reopens(breaker, monotonic):
    func = Flaky(failures=10)
    for _ in range(2):
        with pytest.raises(ServiceUnavailableError):
            await breaker.call_async(func)

    monotonic.now += 31.0
    with pytest.raises(ServiceUnavailableError):
        await breaker.call_async(func)
    assert breaker.state is CircuitState.OPEN
    assert breaker.get_state()["state"] == "open"


@pytest.mark.asyncio
async def test_unexpected_exceptions_do_not_count(breaker):
    func = Flaky(failures=5, error=ValueError("bug"))
    for _ in range(3):
        with pytest.raises(ValueError):
            await breaker.call_async(func)
    assert breaker.state is CircuitState.CLOSED
    assert breaker.failure_count == 0


@pytest.mark.asyncio
async def test_retry_backoff_is_capped(monotonic):
    delays: list[float] = []

    async def sleep(delay):
        delays.append(delay)

    retry = RetryWithCircuitBreaker(
        circuit_breaker=CircuitBreaker(name="retry", failure_threshold=100, clock=monotonic),
        max_retries=4,
        initial_delay=1.0,
        backoff_factor=3.0,
        max_delay=5.0,
        sleep=sleep,
    )
    func = Flaky(failures=10, error=RateLimitError("slow down"))

    with pytest.raises(RateLimitError):
        await retry.call_async(func)

    assert func.calls == 5
    assert delays == [1.0, 3.0, 5.0, 5.0]


@pytest.mark.asyncio
async def test_open_circuit_is_not_retried(monotonic):
    async def sleep(delay):
        raise AssertionError("must not sleep")

    breaker = CircuitBreaker(name="open", failure_threshold=1, clock=monotonic)
    retry = RetryWithCircuitBreaker(circuit_breaker=breaker, max_retries=3, sleep=sleep)
    breaker.state = CircuitState.OPEN
    breaker.last_failure_time = monotonic.now

    with pytest.raises(CircuitOpenError):
        await retry.call_async(Flaky(failures=0))
