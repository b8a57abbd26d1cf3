"""Tests for the circuit breaker factory and protected clients."""

import pytest

from resilience_backbone.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerConfigurationError,
    CircuitBreakerFactory,
    CircuitBreakerOpenError,
    CircuitBreakerState,
    ClassifiedError,
    ProtectedClient,
)


class FakeProviderClient:
    """Client with two independently failing methods and a plain attribute."""

    model = "gpt-test"

    def __init__(self):
        self.a_calls = 0
        self.b_calls = 0
        self.fail_a = False

    async def a(self, value):
        self.a_calls += 1
        if self.fail_a:
            raise ClassifiedError("a is down", error_code="server_error", status_code=502)
        return f"a:{value}"

    async def b(self, value):
        self.b_calls += 1
        return f"b:{value}"

    def describe(self):
        return "fake provider"


@pytest.fixture
def factory(clock, mock_logger):
    return CircuitBreakerFactory(
        CircuitBreakerConfig(failure_threshold=2, timeout_seconds=30),
        clock=clock,
        logger=mock_logger
    )


class TestWrapClient:
    """Test per-method breakers on a wrapped client."""

    @pytest.mark.asyncio
    async def test_wrapped_methods_delegate(self, factory):
        """Test that wrapped methods return the client's results."""
        client = FakeProviderClient()
        protected = factory.wrap_client(client, methods=["a", "b"], name="provider")

        assert isinstance(protected, ProtectedClient)
        assert await protected.a(1) == "a:1"
        assert await protected.b(2) == "b:2"
        assert protected.wrapped_client is client

    @pytest.mark.asyncio
    async def test_breakers_are_isolated_per_method(self, factory):
        """Test that opening one method's breaker leaves its sibling closed."""
        client = FakeProviderClient()
        protected = factory.wrap_client(client, methods=["a", "b"], name="provider")
        client.fail_a = True

        for _ in range(2):
            with pytest.raises(ClassifiedError):
                await protected.a(1)

        with pytest.raises(CircuitBreakerOpenError):
            await protected.a(1)

        assert await protected.b(1) == "b:1"
        assert protected.get_breaker("a").state == CircuitBreakerState.OPEN
        assert protected.get_breaker("b").state == CircuitBreakerState.CLOSED
        assert client.a_calls == 2

    def test_unwrapped_attributes_pass_through(self, factory):
        """Test that attributes not listed are the client's own."""
        client = FakeProviderClient()
        protected = factory.wrap_client(client, methods=["a"])

        assert protected.model == "gpt-test"
        assert protected.describe() == "fake provider"
        assert protected.b.__self__ is client

    def test_delegate_exposes_breaker(self, factory):
        """Test that each delegate carries its breaker and method metadata."""
        protected = factory.wrap_client(FakeProviderClient(), methods=["a"], name="provider")

        assert protected.a.breaker is protected.get_breaker("a")
        assert protected.a.__name__ == "a"

    def test_breaker_names_default_to_class_name(self, factory):
        """Test breaker naming."""
        factory.wrap_client(FakeProviderClient(), methods=["a", "b"])

        assert factory.get("FakeProviderClient.a") is not None
        assert factory.get("FakeProviderClient.b") is not None

    def test_get_breaker_unknown_method(self, factory):
        """Test looking up a method that is not guarded."""
        protected = factory.wrap_client(FakeProviderClient(), methods=["a"])

        with pytest.raises(KeyError):
            protected.get_breaker("describe")

    @pytest.mark.parametrize("methods", [[], "a", ["missing"], ["model"]])
    def test_invalid_methods_rejected(self, factory, methods):
        """Test that methods must name callable attributes."""
        with pytest.raises(CircuitBreakerConfigurationError):
            factory.wrap_client(FakeProviderClient(), methods=methods)

    @pytest.mark.asyncio
    async def test_two_clients_of_same_class_get_own_breakers(self, factory):
        """Test that a second instance of a client class is wrapped with fresh breakers."""
        first_client, second_client = FakeProviderClient(), FakeProviderClient()
        first = factory.wrap_client(first_client, methods=["a"])
        second = factory.wrap_client(second_client, methods=["a"])
        first_client.fail_a = True

        for _ in range(2):
            with pytest.raises(ClassifiedError):
                await first.a(1)

        assert first.get_breaker("a").name == "FakeProviderClient.a"
        assert second.get_breaker("a").name == "FakeProviderClient-2.a"
        assert first.get_breaker("a").is_open
        assert await second.a(1) == "a:1"
        assert second_client.a_calls == 1

    def test_rewrapping_uses_new_config(self, factory):
        """Test that wrapping the same client again applies the config passed in."""
        client = FakeProviderClient()
        first = factory.wrap_client(client, methods=["a"], name="provider")
        second = factory.wrap_client(
            client,
            methods=["a"],
            name="provider",
            config=CircuitBreakerConfig(failure_threshold=9)
        )

        assert first.get_breaker("a").config.failure_threshold == 2
        assert second.get_breaker("a").config.failure_threshold == 9
        assert second.get_breaker("a") is not first.get_breaker("a")

    @pytest.mark.asyncio
    async def test_custom_config_applies_to_every_method(self, factory):
        """Test a per-client configuration override."""
        client = FakeProviderClient()
        protected = factory.wrap_client(
            client,
            methods=["a", "b"],
            name="provider",
            config=CircuitBreakerConfig(failure_threshold=1)
        )
        client.fail_a = True

        with pytest.raises(ClassifiedError):
            await protected.a(1)

        assert protected.get_breaker("a").is_open
        assert protected.get_breaker("b").config.failure_threshold == 1


class TestFactoryRegistry:
    """Test breaker creation, lookup and health reporting."""

    def test_create_is_idempotent_per_name(self, factory):
        """Test that the same name and callable return the same breaker."""
        client = FakeProviderClient()

        first = factory.create(client.a, "provider.a")
        second = factory.create(client.a, "provider.a")

        assert first is second
        assert factory.get("provider.a") is first

    def test_create_rejects_name_reuse(self, factory):
        """Test that one name cannot guard two callables."""
        client = FakeProviderClient()
        factory.create(client.a, "provider.a")

        with pytest.raises(CircuitBreakerConfigurationError):
            factory.create(client.b, "provider.a")

    def test_create_rejects_different_config(self, factory):
        """Test that an existing breaker is not returned for a different configuration."""
        client = FakeProviderClient()
        breaker = factory.create(client.a, "provider.a")

        assert factory.create(client.a, "provider.a", factory.default_config) is breaker
        with pytest.raises(CircuitBreakerConfigurationError):
            factory.create(client.a, "provider.a", CircuitBreakerConfig(failure_threshold=9))

    def test_get_unknown_returns_none(self, factory):
        """Test lookup of a missing breaker."""
        assert factory.get("missing") is None

    @pytest.mark.asyncio
    async def test_check_health_and_reset_all(self, factory):
        """Test the aggregate health summary and bulk reset."""
        client = FakeProviderClient()
        protected = factory.wrap_client(client, methods=["a", "b"], name="provider")
        client.fail_a = True
        for _ in range(2):
            with pytest.raises(ClassifiedError):
                await protected.a(1)

        health = factory.check_health()

        assert health["healthy"] is False
        assert health["total"] == 2
        assert health["unhealthy"] == 1
        assert health["unhealthy_circuits"][0]["name"] == "provider.a"
        assert health["unhealthy_circuits"][0]["last_error"] == "a is down"
        assert len(factory.get_all_status()) == 2

        assert factory.reset_all() == 1
        assert factory.check_health()["healthy"] is True
        assert factory.reset_all() == 0
