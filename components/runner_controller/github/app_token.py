"""Exchange a GitHub App identity for an installation access token.

The app signs a short lived RS256 JWT with its private key and presents it to
`POST /app/installations/<id>/access_tokens`. The returned token is scoped to a
single repository with the permissions a self-hosted runner needs to register.
No retries happen here, a failed exchange fails the reconcile pass.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Final

import httpx
import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from pydantic import ValidationError

from runner_controller.app_config import logging
from runner_controller.app_config.config import GitHubAppConfig
from runner_controller.errors import errors
from runner_controller.github.models import AccessToken
from runner_controller.utils.core import get_ssl_context

logger = logging.getLogger(__name__)

ASSERTION_LIFETIME: Final[timedelta] = timedelta(minutes=10)
GITHUB_API_VERSION: Final[str] = "2022-11-28"
TOKEN_PERMISSIONS: Final[dict[str, str]] = {"actions": "read", "administration": "write", "metadata": "read"}

_PEM_BEGIN: Final[str] = "-----BEGIN "
_PEM_END: Final[str] = "-----END "


def load_private_key(private_key_pem: str) -> RSAPrivateKey:
    """Load an RSA private key from its PEM encoding."""
    if _PEM_BEGIN not in private_key_pem or _PEM_END not in private_key_pem:
        raise errors.KeyDecodeError()
    try:
        key = serialization.load_pem_private_key(private_key_pem.encode(), password=None)
    except (ValueError, TypeError) as e:
        raise errors.KeyParseError(detail=str(e)) from e
    if not isinstance(key, RSAPrivateKey):
        raise errors.KeyParseError(detail=f"Expected an RSA key, got {type(key).__name__}.")
    return key


def sign_app_jwt(private_key_pem: str, client_id: str, now: datetime) -> str:
    """Create the JWT authenticating the GitHub App itself."""
    key = load_private_key(private_key_pem)
    claims = {
        "iat": int(now.timestamp()),
        "exp": int((now + ASSERTION_LIFETIME).timestamp()),
        "iss": client_id,
    }
    try:
        return jwt.encode(claims, key, algorithm="RS256")
    except (jwt.PyJWTError, ValueError, TypeError) as e:
        raise errors.SigningError(detail=str(e)) from e


def repository_scope(repository: str) -> str:
    """The repository name without its owner, `org/repo` becomes `repo`."""
    return repository.split("/", 1)[-1]


class GitHubAppTokenIssuer:
    """Issues installation access tokens for the configured GitHub App."""

    def __init__(
        self,
        config: GitHubAppConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.config = config
        self.transport = transport
        self.timeout = timeout
        self.now = now

    @property
    def token_url(self) -> str:
        """The endpoint creating installation access tokens."""
        return f"{self.config.api_url}/app/installations/{self.config.installation_id}/access_tokens"

    async def issue(self, repository: str) -> AccessToken:
        """Obtain a new installation token restricted to the given `owner/repo` repository."""
        assertion = sign_app_jwt(self.config.private_key, self.config.client_id, self.now())
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {assertion}",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        body = {"repositories": [repository_scope(repository)], "permissions": TOKEN_PERMISSIONS}
        try:
            async with httpx.AsyncClient(
                transport=self.transport, verify=get_ssl_context(), timeout=self.timeout
            ) as client:
                res = await client.post(self.token_url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise errors.RequestError(detail=str(e)) from e

        if res.status_code != httpx.codes.CREATED:
            raise errors.UnexpectedStatusError(
                message=f"The access token endpoint returned status {res.status_code}, expected 201.",
                detail=res.text,
                response_status=res.status_code,
            )
        try:
            token = AccessToken.model_validate_json(res.content)
        except ValidationError as e:
            raise errors.DecodeError(detail=str(e)) from e
        logger.debug(f"Issued an installation token for {repository} expiring at {token.expires_at.isoformat()}")
        return token
