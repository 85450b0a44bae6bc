from __future__ import annotations

import logging
import time

import httpx
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exto.core.cache import TTLCache
from exto.core.config import get_settings
from exto.core.errors import (
    AuthError,
    ConflictError,
    IdentityExistsError,
    OrganizationExistsError,
    UserExistsError,
)
from exto.domain.models import Organization, User
from exto.domain.schema import UserRole
from exto.persistence.db import SessionLocal, with_timeout
from exto.persistence.pagination import PageRequest, fetch_page
from exto.persistence.repos import identities as identities_repo
from exto.persistence.repos import organizations as organizations_repo
from exto.persistence.repos import users as users_repo
from exto.persistence.tenancy import drop_namespace, org_namespace
from exto.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
MICROSOFT_ME_URL = "https://graph.microsoft.com/v1.0/me"
SUPPORTED_PROVIDERS = ("google", "microsoft")


class RequestUser(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    organization_id: str
    identity_id: str
    is_active: bool


class RequestOrg(BaseModel):
    id: str
    name: str
    slug: str


class RequestContext(BaseModel):
    user: RequestUser
    org: RequestOrg


def build_context(user: User, organization: Organization) -> RequestContext:
    return RequestContext(
        user=RequestUser(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            organization_id=user.organization_id,
            identity_id=user.identity_id,
            is_active=user.is_active,
        ),
        org=RequestOrg(id=organization.id, name=organization.name, slug=organization.slug),
    )


def bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise AuthError("Authorization token is required")
    token = authorization.strip()
    scheme, _, credential = token.partition(" ")
    if scheme.lower() == "bearer":
        token = credential.strip()
    if not token:
        raise AuthError("Authorization token is required")
    return token


class TokenVerifier:
    """Resolve a provider token to the caller's email address."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.ext_call_timeout_ms / 1000.0)
        return self._client

    async def _get_json(self, integration: str, url: str, **kwargs) -> dict:
        start = time.monotonic()
        try:
            response = await self._get_client().get(url, **kwargs)
        except httpx.HTTPError as exc:
            record_external_call(
                integration=integration, latency_ms=(time.monotonic() - start) * 1000.0, success=False
            )
            raise AuthError("Token verification failed") from exc
        latency_ms = (time.monotonic() - start) * 1000.0
        record_external_call(integration=integration, latency_ms=latency_ms, success=response.status_code < 400)
        if response.status_code != 200:
            raise AuthError("Invalid token")
        try:
            return response.json()
        except ValueError as exc:
            raise AuthError("Invalid token") from exc

    async def verify(self, provider: str, token: str) -> str:
        provider = (provider or "").lower()
        if provider == "google":
            claims = await self._get_json("auth.google", GOOGLE_TOKENINFO_URL, params={"id_token": token})
            audience = self._settings.google_client_id
            if audience and claims.get("aud") != audience:
                raise AuthError("Token audience mismatch")
            email = claims.get("email")
        elif provider == "microsoft":
            profile = await self._get_json(
                "auth.microsoft", MICROSOFT_ME_URL, headers={"Authorization": f"Bearer {token}"}
            )
            email = profile.get("mail") or profile.get("userPrincipalName")
        else:
            raise AuthError(f"Unsupported auth provider: {provider or '<missing>'}")
        if not email:
            raise AuthError("Email not found in token")
        return str(email).lower()


class RequestContextResolver:
    """Email to (user, organization) resolution with a per-email TTL cache."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
        cache: TTLCache[str, RequestContext] | None = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory
        self._cache = cache or TTLCache(
            max_entries=settings.auth_cache_max_entries,
            ttl_s=settings.auth_cache_ttl_s,
        )

    async def resolve(self, email: str) -> RequestContext:
        key = email.lower()
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        async with self._session_factory() as session:
            identity = await with_timeout(identities_repo.get_by_email(session, key))
            if identity is None or not identity.is_active or not identity.current_org_id:
                raise AuthError("User not found or not authorized")
            user = await with_timeout(
                users_repo.get_active_member(
                    session, identity_id=identity.id, org_id=identity.current_org_id
                )
            )
            if user is None:
                raise AuthError("User not found or not authorized")
            organization = await with_timeout(
                organizations_repo.get_active_by_id(session, identity.current_org_id)
            )
            if organization is None:
                raise AuthError("Organization not found or inactive")
        context = build_context(user, organization)
        self._cache.set(key, context)
        return context

    def evict(self, email: str) -> None:
        self._cache.pop(email.lower())


class IdentityService:
    def __init__(
        self,
        *,
        resolver: RequestContextResolver,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
    ) -> None:
        self._resolver = resolver
        self._session_factory = session_factory

    async def sign_up(self, email: str, first_name: str, last_name: str) -> RequestContext:
        """Create identity, organization and admin user in one transaction."""
        email = email.lower()
        try:
            return await self._sign_up(email, first_name, last_name)
        except IntegrityError as exc:
            # A concurrent sign-up won the race for the email or the org slug.
            raise ConflictError(f"Sign-up for {email} conflicts with an existing record") from exc

    async def _sign_up(self, email: str, first_name: str, last_name: str) -> RequestContext:
        async with self._session_factory() as session:
            async with session.begin():
                if await with_timeout(identities_repo.exists(session, email)):
                    raise IdentityExistsError(f"Identity {email} already exists")
                identity = await with_timeout(
                    identities_repo.create(session, email=email, first_name=first_name, last_name=last_name)
                )
                org_name = f"{email}'s Organization"
                if await with_timeout(organizations_repo.exists_by_name(session, org_name)):
                    raise OrganizationExistsError(f"Organization {org_name} already exists")
                slug = await self._next_org_slug(session)
                organization = await with_timeout(
                    organizations_repo.create(session, name=org_name, slug=slug, owner_id=identity.id)
                )
                if await with_timeout(users_repo.exists(session, org_id=organization.id, email=email)):
                    raise UserExistsError(f"User {email} already exists in {org_name}")
                user = await with_timeout(
                    users_repo.create(
                        session,
                        identity_id=identity.id,
                        org_id=organization.id,
                        email=email,
                        first_name=first_name,
                        last_name=last_name,
                        role=UserRole.organization_admin.value,
                        created_by=identity.id,
                    )
                )
                await with_timeout(identities_repo.set_current_org(session, identity.id, organization.id))
        logger.info("sign-up completed identity_id=%s org_id=%s", identity.id, organization.id)
        return build_context(user, organization)

    async def _next_org_slug(self, session: AsyncSession) -> str:
        # org_<count+1>, skipping slugs left taken after organizations were deleted.
        number = await with_timeout(organizations_repo.count_all(session)) + 1
        while await with_timeout(organizations_repo.exists_by_slug(session, f"org_{number}")):
            number += 1
        return f"org_{number}"

    async def delete_me(self, context: RequestContext) -> list[str]:
        """Delete the caller's owned organizations, their members and the identity.

        Returns the ids of the deleted organizations.
        """
        identity_id = context.user.identity_id
        async with self._session_factory() as session:
            owned = await with_timeout(organizations_repo.list_owned_by(session, identity_id))
        # Tenant namespaces are dropped first, each on its own connection.
        for organization in owned:
            async with self._session_factory() as session:
                await drop_namespace(session, org_namespace(organization.slug))
                await session.commit()
        org_ids = [organization.id for organization in owned]
        async with self._session_factory() as session:
            async with session.begin():
                await with_timeout(users_repo.delete_by_org_ids(session, org_ids))
                await with_timeout(organizations_repo.delete_by_ids(session, org_ids))
                await with_timeout(users_repo.delete_by_identity(session, identity_id))
                await with_timeout(identities_repo.delete_by_id(session, identity_id))
        self._resolver.evict(context.user.email)
        logger.info("identity deleted identity_id=%s organizations=%d", identity_id, len(org_ids))
        return org_ids

    async def list_users(self, org_id: str, page: PageRequest) -> tuple[list[User], int]:
        return await fetch_page(
            self._session_factory,
            page,
            fetch=lambda session, offset, limit: users_repo.list_by_org(
                session, org_id, offset=offset, limit=limit
            ),
            count=lambda session: users_repo.count_by_org(session, org_id),
        )
