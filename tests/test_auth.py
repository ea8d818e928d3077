"""Tests for the ordered credential fallback."""

import pytest

from datastore_migrator.core.exceptions import AuthExhausted, CommandError
from datastore_migrator.engines.auth import (
    first_successful,
    keyspace_strategies,
    relational_strategies,
)
from datastore_migrator.models import CredentialSet


def test_relational_tiers_in_priority_order():
    credentials = CredentialSet(user="app", password="pw", superuser_password="root-pw", database="db")
    strategies = relational_strategies(credentials, "postgres")
    assert [(s.user, s.password) for s in strategies] == [
        ("app", "pw"),
        ("postgres", "root-pw"),
        ("postgres", None),
    ]


def test_superuser_password_tier_only_when_discovered():
    credentials = CredentialSet(user="app", password="pw", database="db")
    assert [s.user for s in relational_strategies(credentials, "root")] == ["app", "root"]


def test_keyspace_tiers():
    assert [s.password for s in keyspace_strategies(CredentialSet(password="pw"))] == ["pw", None]
    assert [s.password for s in keyspace_strategies(CredentialSet())] == [None]


class TestFirstSuccessful:
    @pytest.mark.asyncio
    async def test_returns_first_accepted_tier(self):
        strategies = relational_strategies(
            CredentialSet(user="app", password="pw", superuser_password="root-pw"), "postgres"
        )
        tried = []

        async def attempt(strategy):
            tried.append(strategy.label)
            if strategy.user == "app":
                raise CommandError("password authentication failed")
            return "dumped"

        strategy, result = await first_successful(strategies, attempt, service="svc")
        assert strategy.password == "root-pw"
        assert result == "dumped"
        assert len(tried) == 2

    @pytest.mark.asyncio
    async def test_none_rejects_a_tier(self):
        strategies = keyspace_strategies(CredentialSet(password="pw"))

        async def attempt(strategy):
            return None if strategy.password else "ok"

        strategy, _ = await first_successful(strategies, attempt, service="svc")
        assert strategy.label == "no password"

    @pytest.mark.asyncio
    async def test_exhaustion(self):
        strategies = keyspace_strategies(CredentialSet(password="pw"))

        async def attempt(strategy):
            raise CommandError("NOAUTH")

        with pytest.raises(AuthExhausted) as exc_info:
            await first_successful(strategies, attempt, service="svc")
        assert str(exc_info.value).startswith("dump authentication exhausted")
        assert exc_info.value.reason == "AuthExhausted"
