from __future__ import annotations

import httpx
import pytest

from exto.core.errors import AuthError, IdentityExistsError
from exto.domain.schema import UserRole
from exto.persistence.pagination import PageRequest
from exto.services.identity import TokenVerifier, bearer_token
from exto.tests.utils.factories import create_category, png_bytes, scope_for, sign_up, unique_email


@pytest.mark.asyncio
async def test_sign_up_provisions_org_and_admin(services) -> None:
    email = unique_email("Owner").upper()

    context = await sign_up(services, email)

    assert context.user.email == email.lower()
    assert context.user.role == UserRole.organization_admin.value
    assert context.org.name == f"{email.lower()}'s Organization"
    assert context.org.slug.startswith("org_")
    resolved = await services.resolver.resolve(email)
    assert resolved.org.id == context.org.id
    assert resolved.user.id == context.user.id


@pytest.mark.asyncio
async def test_sign_up_twice_conflicts(services) -> None:
    email = unique_email()
    await sign_up(services, email)

    with pytest.raises(IdentityExistsError):
        await sign_up(services, email)


@pytest.mark.asyncio
async def test_unknown_email_is_unauthorized(services) -> None:
    with pytest.raises(AuthError):
        await services.resolver.resolve(unique_email("ghost"))


@pytest.mark.asyncio
async def test_list_users_returns_the_admin(services) -> None:
    context = await sign_up(services)

    users, total = await services.identity.list_users(context.org.id, PageRequest.normalize(1, 10))

    assert total == 1
    assert [user.id for user in users] == [context.user.id]


@pytest.mark.asyncio
async def test_delete_me_removes_org_and_identity(services) -> None:
    email = unique_email("leaver")
    context = await sign_up(services, email)
    scope = scope_for(context)
    category = await create_category(services)
    upload_path = await services.scans.save_upload(scope, "doc.png", png_bytes())
    await services.category_data.create(
        scope, category.id, metadata={"invoice_no": "A-1"}, raw_data={}, file_path=upload_path, batch_id=None
    )

    deleted = await services.identity.delete_me(context)

    assert deleted == [context.org.id]
    with pytest.raises(AuthError):
        await services.resolver.resolve(email)
    # The email is free again and gets a fresh organization.
    again = await sign_up(services, email)
    assert again.org.id != context.org.id


@pytest.mark.asyncio
async def test_org_slugs_stay_unique_after_deletes(services) -> None:
    first = await sign_up(services)
    await services.identity.delete_me(first)
    second = await sign_up(services)
    third = await sign_up(services)

    assert second.org.slug != third.org.slug


def test_bearer_token_parsing() -> None:
    assert bearer_token("Bearer abc") == "abc"
    assert bearer_token("abc") == "abc"
    with pytest.raises(AuthError):
        bearer_token(None)
    with pytest.raises(AuthError):
        bearer_token("Bearer   ")


@pytest.mark.asyncio
async def test_token_verifier_reads_google_and_microsoft_emails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "oauth2.googleapis.com":
            return httpx.Response(200, json={"email": "Ada@Example.com", "aud": "client"})
        if request.headers.get("Authorization") == "Bearer good":
            return httpx.Response(200, json={"mail": None, "userPrincipalName": "grace@example.com"})
        return httpx.Response(401, json={"error": "invalid_token"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        verifier = TokenVerifier(client=client)

        assert await verifier.verify("google", "token") == "ada@example.com"
        assert await verifier.verify("Microsoft", "good") == "grace@example.com"
        with pytest.raises(AuthError):
            await verifier.verify("microsoft", "bad")
        with pytest.raises(AuthError):
            await verifier.verify("github", "token")


@pytest.mark.parametrize("header", ["Bearer", "Bearer   ", "  bearer  ", "BEARER \t"])
def test_bearer_scheme_without_credential_is_rejected(header) -> None:
    with pytest.raises(AuthError):
        bearer_token(header)


def test_bearer_scheme_is_case_insensitive() -> None:
    assert bearer_token("bearer tok") == "tok"
    assert bearer_token("  BEARER   tok  ") == "tok"
