"""Integration tests for the REST authentication flow.

Covers signup, login, logout, token management and privacy settings.
"""

PASSWORD = "Password123"


def auth(token):
    return {"Authorization": f"Bearer {token}"}


class TestSignupFlow:
    def test_signup_returns_token_and_first_user_is_admin(self, client):
        response = client.post(
            "/v1/auth/signup", json={"username": "alice", "password": PASSWORD}
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "ok"
        assert body["data"]["username"] == "alice"
        assert body["data"]["is_admin"] is True
        assert body["data"]["token"]

    def test_second_user_is_not_admin(self, client, signup_user):
        signup_user("alice")
        response = client.post(
            "/v1/auth/signup", json={"username": "bob", "password": PASSWORD}
        )
        assert response.json()["data"]["is_admin"] is False

    def test_duplicate_username(self, client, signup_user):
        signup_user("alice")
        response = client.post(
            "/v1/auth/signup", json={"username": "alice", "password": PASSWORD}
        )

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "conflict"
        assert error["message"] == "Username already exists"

    def test_policy_violation(self, client):
        response = client.post(
            "/v1/auth/signup", json={"username": "ab", "password": PASSWORD}
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert error["message"] == "Username must be between 3 and 20 characters"

    def test_overlong_credentials_get_policy_messages(self, client):
        long_name = client.post(
            "/v1/auth/signup", json={"username": "a" * 300, "password": PASSWORD}
        )
        assert long_name.status_code == 400
        assert long_name.json()["error"]["message"] == (
            "Username must be between 3 and 20 characters"
        )

        long_password = client.post(
            "/v1/auth/signup",
            json={"username": "alice", "password": "Aa1" + "x" * 2000},
        )
        assert long_password.status_code == 400
        assert long_password.json()["error"]["message"] == (
            "Password must be at most 72 characters"
        )

    def test_malformed_body_is_validation_error(self, client):
        response = client.post("/v1/auth/signup", json={"username": "alice"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"

    def test_response_never_contains_password_hash(self, client, signup_user):
        token = signup_user("alice")
        body = client.get("/v1/me", headers=auth(token)).text
        assert "argon2" not in body
        assert "password" not in body


class TestLoginFlow:
    def test_login_issues_additional_token(self, client, signup_user):
        first = signup_user("alice")
        response = client.post(
            "/v1/auth/login", json={"username": "alice", "password": PASSWORD}
        )

        assert response.status_code == 200
        second = response.json()["data"]["token"]
        assert second != first
        assert client.get("/v1/me", headers=auth(first)).status_code == 200
        assert client.get("/v1/me", headers=auth(second)).status_code == 200

    def test_wrong_password_and_unknown_user_match(self, client, signup_user):
        signup_user("alice")
        wrong = client.post(
            "/v1/auth/login", json={"username": "alice", "password": "wrong"}
        )
        unknown = client.post(
            "/v1/auth/login", json={"username": "nosuchuser", "password": "x"}
        )

        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json()["error"] == unknown.json()["error"]
        assert wrong.json()["error"]["message"] == "Invalid username or password"


class TestBearerHandling:
    def test_missing_malformed_and_unknown_tokens_are_401(self, client):
        for headers in (
            {},
            {"Authorization": "Token abc"},
            {"Authorization": "bearer abc"},
            {"Authorization": "Bearer "},
            {"Authorization": "Bearer unknown-token"},
        ):
            response = client.get("/v1/me", headers=headers)
            assert response.status_code == 401
            assert response.json()["error"]["code"] == "unauthorized"

    def test_token_whitespace_is_trimmed(self, client, signup_user):
        token = signup_user("alice")
        response = client.get("/v1/me", headers={"Authorization": f"Bearer  {token} "})
        assert response.status_code == 200
        assert response.json()["data"]["username"] == "alice"


class TestLogout:
    def test_logout_revokes_only_presented_token(self, client, signup_user):
        first = signup_user("alice")
        second = client.post(
            "/v1/auth/login", json={"username": "alice", "password": PASSWORD}
        ).json()["data"]["token"]

        response = client.post("/v1/auth/logout", headers=auth(first))
        assert response.json()["data"] == {"revoked": True}
        assert client.get("/v1/me", headers=auth(first)).status_code == 401
        assert client.get("/v1/me", headers=auth(second)).status_code == 200


class TestTokenManagement:
    def test_create_list_and_revoke(self, client, signup_user):
        session = signup_user("alice")

        created = client.post("/v1/tokens", headers=auth(session), json={"label": "cli"})
        assert created.status_code == 201
        data = created.json()["data"]
        assert data["label"] == "cli"
        raw = data["token"]
        assert client.get("/v1/me", headers=auth(raw)).status_code == 200

        listed = client.get("/v1/tokens", headers=auth(session)).json()["data"]["items"]
        assert {t["label"] for t in listed} == {"session", "cli"}
        assert all("token" not in t for t in listed)

        revoked = client.delete(f"/v1/tokens/{data['id']}", headers=auth(session))
        assert revoked.json()["data"] == {"revoked": True}
        assert client.get("/v1/me", headers=auth(raw)).status_code == 401

    def test_create_without_body(self, client, signup_user):
        session = signup_user("alice")
        created = client.post("/v1/tokens", headers=auth(session))
        assert created.status_code == 201
        assert created.json()["data"]["label"] is None

    def test_cannot_revoke_someone_elses_token(self, client, signup_user):
        alice = signup_user("alice")
        bob = signup_user("bob")
        alice_token_id = client.get("/v1/tokens", headers=auth(alice)).json()["data"]["items"][0]["id"]

        response = client.delete(f"/v1/tokens/{alice_token_id}", headers=auth(bob))
        assert response.status_code == 200
        assert response.json()["data"] == {"revoked": False}
        assert client.get("/v1/me", headers=auth(alice)).status_code == 200


class TestPrivacySettings:
    def test_toggle_privacy(self, client, signup_user):
        token = signup_user("alice")
        assert client.get("/v1/settings/privacy", headers=auth(token)).json()["data"] == {
            "is_private": False
        }

        updated = client.put(
            "/v1/settings/privacy", headers=auth(token), json={"is_private": True}
        )
        assert updated.json()["data"] == {"is_private": True}
        assert client.get("/v1/me", headers=auth(token)).json()["data"]["is_private"] is True
