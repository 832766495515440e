"""Lifecycle of the installation token of a runner.

The token lives in a secret named after the runner. Its expiry is stored in an
annotation and the runner is reconciled again one minute before it. The last
issued token is cached in memory so that passes in between do not mint a new
token only to find that the secret is up to date.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from runner_controller.app_config import logging
from runner_controller.errors import errors
from runner_controller.github.models import AccessToken
from runner_controller.runner import constants
from runner_controller.runner.apply import SecretApplier
from runner_controller.runner.builders import DesiredStateBuilder
from runner_controller.runner.crs import Runner
from runner_controller.runner.models import ReconcileResult

logger = logging.getLogger(__name__)


class TokenIssuer(Protocol):
    """Something that can issue installation tokens."""

    async def issue(self, repository: str) -> AccessToken:
        """Issue a token scoped to the `owner/repo` repository."""
        ...


def parse_expiry(manifest: dict[str, Any]) -> datetime:
    """Read the expiry annotation of a token secret."""
    annotations = (manifest.get("metadata") or {}).get("annotations") or {}
    value = annotations.get(constants.EXPIRES_AT_ANNOTATION)
    if not isinstance(value, str):
        raise errors.ExpiryParseError(message=f"The annotation {constants.EXPIRES_AT_ANNOTATION} is missing.")
    try:
        expires_at = datetime.fromisoformat(value)
    except ValueError as e:
        raise errors.ExpiryParseError(detail=f"Cannot parse {value!r}: {e}") from e
    if expires_at.tzinfo is None:
        raise errors.ExpiryParseError(detail=f"The timestamp {value!r} has no timezone.")
    return expires_at


class TokenCache:
    """The last token issued for each runner and repository."""

    def __init__(self, margin: timedelta = constants.RENEWAL_MARGIN) -> None:
        self.margin = margin
        self.__tokens: dict[tuple[str, str, str], AccessToken] = {}

    def get(self, runner: Runner, now: datetime) -> AccessToken | None:
        """The cached token if it is still valid for longer than the renewal margin."""
        key = (runner.metadata.namespace, runner.metadata.name, runner.spec.repository)
        token = self.__tokens.get(key)
        if token is None:
            return None
        if token.remaining(now) <= self.margin:
            del self.__tokens[key]
            return None
        return token

    def put(self, runner: Runner, token: AccessToken) -> None:
        """Remember the token issued for the runner, replacing any previous one."""
        self.evict(runner.metadata.namespace, runner.metadata.name)
        self.__tokens[(runner.metadata.namespace, runner.metadata.name, runner.spec.repository)] = token

    def evict(self, namespace: str, name: str) -> None:
        """Forget all tokens of a runner."""
        for key in [k for k in self.__tokens if k[0] == namespace and k[1] == name]:
            del self.__tokens[key]

    def __len__(self) -> int:
        return len(self.__tokens)


class CredentialManager:
    """Keeps the token secret of a runner issued and renewed."""

    def __init__(
        self,
        issuer: TokenIssuer,
        builder: DesiredStateBuilder,
        applier: SecretApplier,
        cache: TokenCache | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.issuer = issuer
        self.builder = builder
        self.applier = applier
        self.cache = cache if cache is not None else TokenCache()
        self.now = now

    async def token(self, runner: Runner) -> AccessToken:
        """A token for the runner, reusing the cached one while it is not due for renewal."""
        cached = self.cache.get(runner, self.now())
        if cached is not None:
            return cached
        token = await self.issuer.issue(runner.spec.repository)
        self.cache.put(runner, token)
        return token

    async def reconcile(self, runner: Runner) -> ReconcileResult:
        """Create or renew the token secret and schedule the next renewal.

        The next pass is requested one minute before the stored token expires, a token that expires in less than
        a minute results in a negative delay, i.e. an immediate pass.
        """
        token = await self.token(runner)
        result = await self.applier.apply(runner, self.builder.token_secret(runner, token))
        expires_at = parse_expiry(result.object.manifest)
        requeue_after = expires_at - self.now() - constants.RENEWAL_MARGIN
        if result.changed:
            logger.info(f"The token secret of {runner.key} was {result.action}, renewing in {requeue_after}")
        return ReconcileResult(requeue_after=requeue_after)
