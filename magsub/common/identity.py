"""Identity provider client (Supabase Auth) and bearer-token helpers."""

from dataclasses import dataclass, field
from datetime import datetime

import httpx
from fastapi import Depends, Header, Request

from magsub.common.errors import AuthenticationFailed
from magsub.common.logging import logger


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str = ""
    user_metadata: dict = field(default_factory=dict)
    created_at: str | None = None


@dataclass(frozen=True)
class UserProfile:
    user_id: str
    profile_image: str | None
    name: str
    email: str
    join_date: str


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an `Authorization: Bearer <token>` header."""

    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class IdentityClient:
    """Resolves bearer tokens to users through the provider's `/auth/v1/user`."""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self.transport = transport

    def get_user(self, token: str) -> AuthUser:
        """Return the user owning `token`; raise `AuthenticationFailed` otherwise."""

        headers = {"Authorization": f"Bearer {token}", "apikey": self.anon_key}
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                resp = client.get(f"{self.base_url}/auth/v1/user", headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("identity lookup failed error=%s", exc)
            raise AuthenticationFailed("could not verify credential") from exc
        if resp.status_code != 200:
            raise AuthenticationFailed("invalid or expired credential")
        payload = resp.json()
        user_id = payload.get("id")
        if not isinstance(user_id, str) or not user_id:
            raise AuthenticationFailed("identity response malformed")
        return AuthUser(
            id=user_id,
            email=payload.get("email") or "",
            user_metadata=payload.get("user_metadata") or {},
            created_at=payload.get("created_at"),
        )


def optional_caller(request: Request, authorization: str | None = Header(default=None)) -> AuthUser | None:
    """FastAPI dependency: the authenticated user, or None without a credential.

    A credential that is present but unusable is rejected rather than ignored.
    """

    token = bearer_token(authorization)
    if token is None:
        if authorization:
            raise AuthenticationFailed("malformed Authorization header")
        return None
    return request.app.state.identity.get_user(token)


def required_caller(caller: AuthUser | None = Depends(optional_caller)) -> AuthUser:
    if caller is None:
        raise AuthenticationFailed("authentication required")
    return caller


def format_join_date(created_at: str | None) -> str:
    """`YYYY.MM` of an ISO timestamp; current month when unparseable."""

    try:
        joined = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        joined = datetime.now()
    return f"{joined.year}.{joined.month:02d}"


def profile_of(user: AuthUser) -> UserProfile:
    """Display profile with OAuth metadata fallbacks."""

    meta = user.user_metadata
    name = meta.get("full_name") or meta.get("name") or (user.email.split("@")[0] if user.email else "") or "user"
    return UserProfile(
        user_id=user.id,
        profile_image=meta.get("avatar_url") or meta.get("picture"),
        name=name,
        email=user.email,
        join_date=format_join_date(user.created_at),
    )
