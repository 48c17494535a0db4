"""Tests for CredentialStore token lifecycle."""

from __future__ import annotations

import asyncio

import pytest

from apaas_client.errors import AuthError
from apaas_client.resilience.credentials import Credential, CredentialStore


class FakeIssuer:
    """Issues numbered tokens valid for ``ttl_ms`` from the fake clock."""

    def __init__(self, clock: list[int], ttl_ms: int = 7_200_000) -> None:
        self.clock = clock
        self.ttl_ms = ttl_ms
        self.calls = 0
        self.fail_with: Exception | None = None
        self.delay_s = 0.0

    async def __call__(self) -> Credential:
        self.calls += 1
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.fail_with is not None:
            raise self.fail_with
        return Credential(token=f"tok-{self.calls}", expire_at_ms=self.clock[0] + self.ttl_ms)


class TestCredentialStore:
    """Tests for CredentialStore."""

    @pytest.fixture
    def clock(self) -> list[int]:
        return [1_000_000]

    @pytest.fixture
    def issuer(self, clock: list[int]) -> FakeIssuer:
        return FakeIssuer(clock)

    @pytest.fixture
    def store(self, clock: list[int], issuer: FakeIssuer) -> CredentialStore:
        return CredentialStore(issuer, time_fn=lambda: clock[0])

    @pytest.mark.asyncio
    async def test_first_call_fetches(self, store: CredentialStore, issuer: FakeIssuer) -> None:
        assert store.token is None
        assert await store.ensure_valid() == "tok-1"
        assert issuer.calls == 1
        assert store.stats.refreshes == 1

    @pytest.mark.asyncio
    async def test_cached_token_reused(self, store: CredentialStore, issuer: FakeIssuer) -> None:
        await store.ensure_valid()
        await store.ensure_valid()
        await store.ensure_valid()
        assert issuer.calls == 1

    @pytest.mark.asyncio
    async def test_refresh_iff_within_margin(
        self, store: CredentialStore, issuer: FakeIssuer, clock: list[int]
    ) -> None:
        """Refresh happens exactly when less than 60s of validity remain."""
        credential = await store.refresh()
        expire = credential.expire_at_ms

        # 60s left: now + 60000 == expire, still valid
        clock[0] = expire - 60_000
        assert not store.needs_refresh()
        assert await store.ensure_valid() == "tok-1"

        # 59.999s left: refresh
        clock[0] = expire - 59_999
        assert store.needs_refresh()
        assert await store.ensure_valid() == "tok-2"
        assert issuer.calls == 2

    @pytest.mark.asyncio
    async def test_cache_disabled_always_refreshes(
        self, clock: list[int], issuer: FakeIssuer
    ) -> None:
        store = CredentialStore(issuer, disable_cache=True, time_fn=lambda: clock[0])
        assert await store.ensure_valid() == "tok-1"
        assert await store.ensure_valid() == "tok-2"
        assert issuer.calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_refresh(
        self, store: CredentialStore, issuer: FakeIssuer
    ) -> None:
        """Single-flight: one issue call for many concurrent callers."""
        issuer.delay_s = 0.01
        tokens = await asyncio.gather(*(store.ensure_valid() for _ in range(10)))
        assert tokens == ["tok-1"] * 10
        assert issuer.calls == 1

    @pytest.mark.asyncio
    async def test_issue_failure_propagates(
        self, store: CredentialStore, issuer: FakeIssuer
    ) -> None:
        issuer.fail_with = AuthError("invalid client", code="k_ident_013000")

        with pytest.raises(AuthError, match="invalid client"):
            await store.ensure_valid()

        assert store.token is None
        assert store.stats.refresh_failures == 1

        issuer.fail_with = None
        assert await store.ensure_valid() == "tok-2"

    @pytest.mark.asyncio
    async def test_concurrent_failure_reaches_every_waiter(
        self, store: CredentialStore, issuer: FakeIssuer
    ) -> None:
        issuer.delay_s = 0.01
        issuer.fail_with = AuthError("down")

        results = await asyncio.gather(
            *(store.ensure_valid() for _ in range(3)), return_exceptions=True
        )
        assert all(isinstance(r, AuthError) for r in results)
        assert issuer.calls == 1

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_refresh(
        self, store: CredentialStore, issuer: FakeIssuer
    ) -> None:
        issuer.delay_s = 0.02
        first = asyncio.create_task(store.ensure_valid())
        second = asyncio.create_task(store.ensure_valid())
        await asyncio.sleep(0.005)

        first.cancel()
        assert await second == "tok-1"
        assert issuer.calls == 1

    @pytest.mark.asyncio
    async def test_remaining_seconds(self, store: CredentialStore, clock: list[int]) -> None:
        assert store.remaining_seconds() is None

        credential = await store.ensure_valid()
        assert credential == "tok-1"
        assert store.remaining_seconds() == 7200

        clock[0] += 7_200_000
        assert store.remaining_seconds() == 0

    @pytest.mark.asyncio
    async def test_invalidate_forces_refresh(
        self, store: CredentialStore, issuer: FakeIssuer
    ) -> None:
        await store.ensure_valid()
        store.invalidate()
        assert await store.ensure_valid() == "tok-2"

    def test_negative_margin_rejected(self, issuer: FakeIssuer) -> None:
        with pytest.raises(ValueError):
            CredentialStore(issuer, refresh_margin_ms=-1)
