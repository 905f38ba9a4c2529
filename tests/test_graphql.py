"""GraphQL endpoint tests."""

import pytest
from strawberry.extensions import MaskErrors, SchemaExtension

from scrob.api.graphql import schema

PASSWORD = "Password123"


def gql(client, query, variables=None, token=None):
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    response = client.post(
        "/graphql", json={"query": query, "variables": variables or {}}, headers=headers
    )
    assert response.status_code == 200, response.text
    return response.json()


def error_messages(body):
    return [error["message"] for error in body.get("errors") or []]


@pytest.fixture
def token(signup_user):
    return signup_user("alice")


class TestAuthentication:
    def test_me_is_null_when_anonymous(self, client):
        body = gql(client, "{ me { username } }")
        assert body["data"] == {"me": None}

    def test_me_with_token(self, client, token):
        body = gql(client, "{ me { username isAdmin isPrivate } }", token=token)
        assert body["data"]["me"] == {"username": "alice", "isAdmin": True, "isPrivate": False}

    def test_protected_query_without_token(self, client):
        body = gql(client, "{ recentScrobs { id } }")
        assert error_messages(body) == ["Authentication required"]

    def test_protected_query_with_revoked_token(self, client, token):
        client.post("/v1/auth/logout", headers={"Authorization": f"Bearer {token}"})
        body = gql(client, "{ apiTokens { id } }", token=token)
        assert error_messages(body) == ["Authentication required"]

    def test_login_mutation_labels_token(self, client, token):
        body = gql(
            client,
            """
            mutation Login($username: String!, $password: String!) {
              login(username: $username, password: $password) {
                token
                user { username }
              }
            }
            """,
            {"username": "alice", "password": PASSWORD},
        )
        payload = body["data"]["login"]
        assert payload["user"]["username"] == "alice"

        tokens = gql(client, "{ apiTokens { label } }", token=payload["token"])
        labels = {t["label"] for t in tokens["data"]["apiTokens"]}
        assert labels == {"session", "UI session"}

    def test_login_failure_message(self, client, token):
        body = gql(
            client,
            'mutation { login(username: "alice", password: "nope") { token } }',
        )
        assert error_messages(body) == ["Invalid username or password"]


class TestErrorMasking:
    def test_extensions_are_built_per_request(self):
        first, second = schema.get_extensions(), schema.get_extensions()
        assert not any(isinstance(ext, SchemaExtension) for ext in schema.extensions)
        assert isinstance(first[0], MaskErrors)
        assert first[0] is not second[0]

    def test_unexpected_errors_are_masked(self, client, token, runtime):
        def broken(user_id):
            raise RuntimeError("relation api_tokens does not exist")

        runtime.store.list_tokens = broken
        body = gql(client, "{ apiTokens { id } }", token=token)
        assert error_messages(body) == ["internal server error"]


class TestApiTokens:
    def test_create_list_and_revoke(self, client, token):
        created = gql(
            client,
            'mutation { createApiToken(label: "scrobbler") { id label token } }',
            token=token,
        )["data"]["createApiToken"]
        assert created["label"] == "scrobbler"
        assert created["token"]

        listed = gql(client, "{ apiTokens { id label token } }", token=token)
        assert all(t["token"] is None for t in listed["data"]["apiTokens"])

        revoked = gql(
            client,
            "mutation Revoke($id: ID!) { revokeApiToken(id: $id) }",
            {"id": created["id"]},
            token=token,
        )
        assert revoked["data"] == {"revokeApiToken": True}

        again = gql(client, "{ me { username } }", token=created["token"])
        assert again["data"] == {"me": None}

    def test_revoke_with_malformed_id(self, client, token):
        body = gql(client, 'mutation { revokeApiToken(id: "abc") }', token=token)
        assert error_messages(body) == ["Invalid token ID"]


class TestScrobbling:
    SCROB = """
    mutation Scrob($input: ScrobInput!) {
      scrob(input: $input) { id artist track album }
    }
    """

    def test_scrob_and_read_back(self, client, token):
        body = gql(
            client,
            self.SCROB,
            {
                "input": {
                    "artist": "Alpha",
                    "track": "one",
                    "album": "First",
                    "timestamp": "2024-05-01T12:00:00+00:00",
                }
            },
            token=token,
        )
        assert body["data"]["scrob"]["artist"] == "Alpha"

        recent = gql(client, "{ recentScrobs(limit: 5) { track album } }", token=token)
        assert recent["data"]["recentScrobs"] == [{"track": "one", "album": "First"}]

    def test_batch_and_top_lists(self, client, token):
        inputs = [
            {"artist": "Alpha", "track": "one", "timestamp": "2024-05-01T12:00:00+00:00"},
            {"artist": "Alpha", "track": "two", "timestamp": "2024-05-01T12:05:00+00:00"},
            {"artist": "Beta", "track": "one", "timestamp": "2024-06-01T12:00:00+00:00"},
        ]
        body = gql(
            client,
            "mutation Batch($inputs: [ScrobInput!]!) { scrobBatch(inputs: $inputs) { id } }",
            {"inputs": inputs},
            token=token,
        )
        assert len(body["data"]["scrobBatch"]) == 3

        top = gql(client, "{ topArtists { name count } }", token=token)
        assert top["data"]["topArtists"] == [
            {"name": "Alpha", "count": 2},
            {"name": "Beta", "count": 1},
        ]

        may = gql(
            client,
            """
            {
              topTracks(range: {from: "2024-05-01T00:00:00+00:00", to: "2024-05-31T00:00:00+00:00"}) {
                artist track count
              }
            }
            """,
            token=token,
        )
        assert [t["track"] for t in may["data"]["topTracks"]] == ["one", "two"]

    def test_batch_over_limit(self, client, token):
        inputs = [
            {"artist": "Alpha", "track": f"t{i}", "timestamp": "2024-05-01T12:00:00+00:00"}
            for i in range(51)
        ]
        body = gql(
            client,
            "mutation Batch($inputs: [ScrobInput!]!) { scrobBatch(inputs: $inputs) { id } }",
            {"inputs": inputs},
            token=token,
        )
        assert error_messages(body) == ["Maximum 50 scrobbles per batch"]

    def test_now_playing(self, client, token):
        body = gql(
            client,
            'mutation { nowPlaying(input: {artist: "Alpha", track: "one"}) }',
            token=token,
        )
        assert body["data"] == {"nowPlaying": True}
