import asyncio

import pytest

from synthgate.core.config import Settings, settings

# Override settings for tests
settings.fernet_key = "KxJCocbnA3KD20pkgSN3uUZybasKP1X9lAJDX4oLxoQ="  # test-only Fernet key
settings.app_env = "development"
settings.database_url = ""  # memory-only unless a test opts in
settings.api_keys = ""

from synthgate.gateway.cache import ResponseCache  # noqa: E402
from synthgate.gateway.credential_pool import CredentialPool  # noqa: E402
from synthgate.gateway.orchestrator import InvocationOrchestrator  # noqa: E402
from synthgate.gateway.retry import RetryPolicy  # noqa: E402
from synthgate.gateway.throttle import ConcurrencyThrottle  # noqa: E402
from synthgate.gateway.types import GenerationKind  # noqa: E402

TEST_FERNET_KEY = settings.fernet_key

KEY_A = "AIza" + "A" * 35
KEY_B = "AIza" + "B" * 35
KEY_C = "AIza" + "C" * 35


class FakeClock:
    """Manual clock; ``sleep`` records the wait and advances time instead of waiting."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeProvider:
    """Scripted provider shared by every adapter it creates.

    ``script(secret, *outcomes)`` queues results for calls made with that
    secret: exceptions are raised, anything else is returned. Unscripted calls
    succeed with ``b"audio:<content>"`` or ``"text:<content>"``.
    """

    def __init__(self, delay: float = 0.0):
        self.calls: list[tuple[str, str]] = []
        self.scripts: dict[str, list] = {}
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight_seen = 0

    def script(self, secret: str, *outcomes) -> None:
        self.scripts.setdefault(secret, []).extend(outcomes)

    def factory(self, secret: str) -> "FakeAdapter":
        return FakeAdapter(self, secret)

    def secrets_called(self) -> list[str]:
        return [secret for secret, _ in self.calls]


class FakeAdapter:
    def __init__(self, provider: FakeProvider, secret: str):
        self.provider = provider
        self.secret = secret

    async def generate(self, payload):
        provider = self.provider
        provider.calls.append((self.secret, payload.content))
        provider.in_flight += 1
        provider.max_in_flight_seen = max(provider.max_in_flight_seen, provider.in_flight)
        try:
            if provider.delay:
                await asyncio.sleep(provider.delay)
            else:
                await asyncio.sleep(0)
            queue = provider.scripts.get(self.secret)
            if queue:
                outcome = queue.pop(0)
                if isinstance(outcome, BaseException):
                    raise outcome
                return outcome
            if payload.kind == GenerationKind.AUDIO:
                return f"audio:{payload.content}".encode()
            return f"text:{payload.content}"
        finally:
            provider.in_flight -= 1


def make_settings(**overrides) -> Settings:
    """Settings tuned for tests: no pacing delay, no database, two credentials."""
    values = {
        "api_keys": f"{KEY_A},{KEY_B}",
        "database_url": "",
        "fernet_key": "",
        "adaptive_delay_base": 0.0,
        "adaptive_delay_min": 0.0,
        "adaptive_delay_max": 0.0,
        "adaptive_step_down": 0.0,
        "adaptive_step_up": 0.0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeProvider()


def build_orchestrator(clock, provider, keys=(KEY_A, KEY_B), policy=None, cache=True, throttle=None):
    """Orchestrator over a fresh pool with pacing disabled and time faked."""
    pool = CredentialPool(list(keys), clock=clock)
    throttle = throttle or ConcurrencyThrottle(
        base_delay=0.0,
        min_delay=0.0,
        max_delay=0.0,
        step_down=0.0,
        step_up=0.0,
        clock=clock,
        sleep=clock.sleep,
    )
    return InvocationOrchestrator(
        pool,
        throttle,
        provider.factory,
        cache=ResponseCache(clock=clock) if cache else None,
        policy=policy or RetryPolicy(),
        clock=clock,
        sleep=clock.sleep,
    )
