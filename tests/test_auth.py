"""Auth API: register, login, OAuth, refresh rotation, me, logout, account deletion."""

import pytest

TEST_PASSWORD = "Password123"

REGISTER_BODY = {
    "email": "A@Example.com",
    "password": "Abcd1234",
    "username": "alice",
    "first_name": "Alice",
    "last_name": "Smith",
}


async def _register(client, **overrides):
    return await client.post("/api/auth/register", json={**REGISTER_BODY, **overrides})


@pytest.mark.asyncio
async def test_register_returns_tokens_and_user(client):
    r = await _register(client)
    assert r.status_code == 201
    data = r.json()
    assert data["token_type"] == "bearer"
    assert data["expires_in"] == 900
    assert len(data["refresh_token"]) == 128
    assert data["user"]["email"] == "a@example.com"
    assert data["user"]["username"] == "alice"
    assert data["user"]["auth_provider"] == "email"
    assert data["user"]["role"] == "user"
    assert "password_hash" not in data["user"]

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert me.status_code == 200
    assert me.json()["id"] == data["user"]["id"]


@pytest.mark.asyncio
async def test_register_duplicate_email(client):
    assert (await _register(client)).status_code == 201
    r = await _register(client, email="a@EXAMPLE.com", username="other")
    assert r.status_code == 409
    assert r.json()["code"] == "EMAIL_ALREADY_EXISTS"


@pytest.mark.asyncio
async def test_register_duplicate_username(client):
    assert (await _register(client)).status_code == 201
    r = await _register(client, email="b@example.com")
    assert r.status_code == 409
    assert r.json()["code"] == "USERNAME_ALREADY_EXISTS"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"email": "not-an-email"},
        {"password": "short1A"},
        {"password": "alllowercase1"},
        {"password": "ALLUPPERCASE1"},
        {"password": "NoDigitsHere"},
        {"username": "ab"},
        {"username": "has space"},
        {"username": "x" * 31},
        {"first_name": ""},
    ],
)
async def test_register_validation(client, overrides):
    r = await _register(client, **overrides)
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_login_success(client, test_user):
    r = await client.post("/api/auth/login", json={"email": "TEST@example.com", "password": TEST_PASSWORD})
    assert r.status_code == 200
    data = r.json()
    assert data["user"]["id"] == test_user.id
    assert data["access_token"]
    assert data["refresh_token"]


@pytest.mark.asyncio
async def test_login_wrong_password(client, test_user):
    r = await client.post("/api/auth/login", json={"email": "test@example.com", "password": "Wrong1234"})
    assert r.status_code == 401
    assert r.json()["code"] == "INVALID_CREDENTIALS"


@pytest.mark.asyncio
async def test_login_unknown_email_same_answer(client, test_user):
    wrong = await client.post("/api/auth/login", json={"email": "test@example.com", "password": "Wrong1234"})
    unknown = await client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "Wrong1234"})
    assert unknown.status_code == 401
    assert unknown.json() == wrong.json()


@pytest.mark.asyncio
async def test_login_oauth_account(client, oauth_user):
    r = await client.post("/api/auth/login", json={"email": "oauth@example.com", "password": TEST_PASSWORD})
    assert r.status_code == 400
    assert r.json()["code"] == "OAUTH_ACCOUNT"


@pytest.mark.asyncio
async def test_refresh_rotation_and_replay(client):
    first = (await _register(client)).json()

    r1 = await client.post("/api/auth/refresh", json={"refresh_token": first["refresh_token"]})
    assert r1.status_code == 200
    second = r1.json()
    assert second["refresh_token"] != first["refresh_token"]

    r2 = await client.post("/api/auth/refresh", json={"refresh_token": second["refresh_token"]})
    assert r2.status_code == 200

    replay = await client.post("/api/auth/refresh", json={"refresh_token": first["refresh_token"]})
    assert replay.status_code == 401
    assert replay.json()["code"] == "INVALID_REFRESH_TOKEN"


@pytest.mark.asyncio
async def test_refresh_unknown_token(client):
    r = await client.post("/api/auth/refresh", json={"refresh_token": "f" * 128})
    assert r.status_code == 401
    assert r.json()["code"] == "INVALID_REFRESH_TOKEN"


@pytest.mark.asyncio
async def test_refresh_missing_token(client):
    r = await client.post("/api/auth/refresh", json={})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_me(client, test_user, auth_headers):
    r = await client.get("/api/auth/me", headers=auth_headers)
    assert r.status_code == 200
    data = r.json()
    assert data["email"] == "test@example.com"
    assert data["username"] == "tester"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Authorization": "Bearer"},
        {"Authorization": "Basic dGVzdDp0ZXN0"},
        {"Authorization": "Bearer not.a.token"},
    ],
)
async def test_me_unauthorized(client, headers):
    r = await client.get("/api/auth/me", headers=headers)
    assert r.status_code == 401
    assert r.json()["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_me_for_deleted_user(client, test_user, bearer):
    headers = bearer(test_user)
    r = await client.request("DELETE", "/api/auth/account", headers=headers, json={"password": TEST_PASSWORD})
    assert r.status_code == 200
    r = await client.get("/api/auth/me", headers=headers)
    assert r.status_code == 404
    assert r.json()["code"] == "USER_NOT_FOUND"


@pytest.mark.asyncio
async def test_google_login_creates_account(client, verifiers):
    r = await client.post("/api/auth/google", json={"access_token": "good-google-token"})
    assert r.status_code == 200
    user = r.json()["user"]
    assert user["email"] == "runner.one@gmail.com"
    assert user["auth_provider"] == "google"
    assert user["username"].startswith("runner_one_")
    assert (user["first_name"], user["last_name"]) == ("Ann", "Runner")
    assert verifiers["google"].calls == ["good-google-token"]

    again = await client.post("/api/auth/google", json={"access_token": "good-google-token"})
    assert again.json()["user"]["id"] == user["id"]


@pytest.mark.asyncio
async def test_google_login_rejected(client):
    r = await client.post("/api/auth/google", json={"access_token": "bad"})
    assert r.status_code == 401
    assert r.json()["code"] == "GOOGLE_AUTH_FAILED"


@pytest.mark.asyncio
async def test_apple_login_uses_client_supplied_name(client):
    r = await client.post(
        "/api/auth/apple",
        json={"id_token": "good-apple-token", "first_name": "Jo", "last_name": "Doe"},
    )
    assert r.status_code == 200
    user = r.json()["user"]
    assert user["email"] == "apple.user@privaterelay.appleid.com"
    assert user["auth_provider"] == "apple"
    assert (user["first_name"], user["last_name"]) == ("Jo", "Doe")


@pytest.mark.asyncio
async def test_apple_login_rejected(client):
    r = await client.post("/api/auth/apple", json={"id_token": "forged"})
    assert r.status_code == 401
    assert r.json()["code"] == "APPLE_AUTH_FAILED"


@pytest.mark.asyncio
async def test_provider_not_enabled(client, verifiers):
    verifiers.pop("apple")
    r = await client.post("/api/auth/apple", json={"id_token": "good-apple-token"})
    assert r.status_code == 404
    assert r.json()["code"] == "PROVIDER_NOT_ENABLED"


@pytest.mark.asyncio
async def test_logout_revokes_refresh_tokens(client):
    first = (await _register(client)).json()
    second = (
        await client.post("/api/auth/login", json={"email": "a@example.com", "password": "Abcd1234"})
    ).json()

    r = await client.post("/api/auth/logout", headers={"Authorization": f"Bearer {first['access_token']}"})
    assert r.status_code == 200

    for token in (first["refresh_token"], second["refresh_token"]):
        replay = await client.post("/api/auth/refresh", json={"refresh_token": token})
        assert replay.status_code == 401


@pytest.mark.asyncio
async def test_logout_requires_auth(client):
    r = await client.post("/api/auth/logout")
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_delete_account_wrong_password(client, test_user, auth_headers):
    r = await client.request("DELETE", "/api/auth/account", headers=auth_headers, json={"password": "Wrong1234"})
    assert r.status_code == 401
    assert r.json()["code"] == "INVALID_PASSWORD"
    assert (await client.get("/api/auth/me", headers=auth_headers)).status_code == 200


@pytest.mark.asyncio
async def test_delete_account_missing_password(client, test_user, auth_headers):
    r = await client.request("DELETE", "/api/auth/account", headers=auth_headers)
    assert r.status_code == 401
    assert r.json()["code"] == "INVALID_PASSWORD"


@pytest.mark.asyncio
async def test_delete_account(client):
    data = (await _register(client)).json()
    headers = {"Authorization": f"Bearer {data['access_token']}"}
    r = await client.request("DELETE", "/api/auth/account", headers=headers, json={"password": "Abcd1234"})
    assert r.status_code == 200

    login = await client.post("/api/auth/login", json={"email": "a@example.com", "password": "Abcd1234"})
    assert login.status_code == 401
    refresh = await client.post("/api/auth/refresh", json={"refresh_token": data["refresh_token"]})
    assert refresh.status_code == 401
    # Email is free again
    assert (await _register(client)).status_code == 201


@pytest.mark.asyncio
async def test_delete_oauth_account_without_password(client, oauth_user, bearer):
    headers = bearer(oauth_user)
    r = await client.request("DELETE", "/api/auth/account", headers=headers)
    assert r.status_code == 200
    assert (await client.get("/api/auth/me", headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_health(client):
    r = await client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.headers["X-Content-Type-Options"] == "nosniff"
