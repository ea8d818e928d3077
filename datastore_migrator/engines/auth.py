"""Ordered credential fallback shared by every engine adapter.

Each adapter describes its fallback tiers as a list of ``CredentialStrategy``
objects; ``first_successful`` walks them in order and returns the first one
under which the attempted operation produced a usable result.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import structlog

from ..core.exceptions import AuthExhausted, CommandError
from ..models import CredentialSet

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class CredentialStrategy:
    """One candidate (user, password) pair."""

    label: str
    user: str | None = None
    password: str | None = field(default=None, repr=False)


def relational_strategies(credentials: CredentialSet, superuser: str) -> list[CredentialStrategy]:
    """Service user, then superuser with discovered password, then superuser without one."""
    strategies: list[CredentialStrategy] = []
    if credentials.user and credentials.password:
        strategies.append(
            CredentialStrategy(f"user {credentials.user}", credentials.user, credentials.password)
        )
    if credentials.superuser_password:
        strategies.append(
            CredentialStrategy(f"{superuser} with password", superuser, credentials.superuser_password)
        )
    strategies.append(CredentialStrategy(f"{superuser} without password", superuser, None))
    return strategies


def keyspace_strategies(credentials: CredentialSet) -> list[CredentialStrategy]:
    """Discovered password first, then an unauthenticated connection."""
    strategies: list[CredentialStrategy] = []
    if credentials.password:
        strategies.append(CredentialStrategy("password", None, credentials.password))
    strategies.append(CredentialStrategy("no password"))
    return strategies


async def first_successful(
    strategies: list[CredentialStrategy],
    attempt: Callable[[CredentialStrategy], Awaitable[T | None]],
    *,
    service: str,
    operation: str = "dump",
) -> tuple[CredentialStrategy, T]:
    """Evaluate ``attempt`` per strategy in order.

    ``attempt`` returns None (or raises CommandError) to reject a tier.

    Raises:
        AuthExhausted: When every strategy was rejected
    """
    log = logger.bind(component="auth_fallback", service=service, operation=operation)
    failures: list[str] = []
    for strategy in strategies:
        log.debug("Trying credential strategy", strategy=strategy.label)
        try:
            result = await attempt(strategy)
        except CommandError as e:
            failures.append(f"{strategy.label}: {e}")
            log.info("Credential strategy failed", strategy=strategy.label, error=str(e))
            continue
        if result is None:
            failures.append(f"{strategy.label}: rejected")
            log.info("Credential strategy rejected", strategy=strategy.label)
            continue
        log.info("Credential strategy succeeded", strategy=strategy.label)
        return strategy, result

    raise AuthExhausted(
        f"{operation} authentication exhausted after {len(strategies)} strategies"
        + (f" ({'; '.join(failures)})" if failures else "")
    )
