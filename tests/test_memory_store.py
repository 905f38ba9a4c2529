from datetime import datetime, timedelta, timezone

import pytest

from scrob.storage.errors import ConstraintViolation
from scrob.storage.memory import MemoryStore
from scrob.storage.models import Play

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _play(artist, track, minutes=0, album=None):
    return Play(artist=artist, track=track, album=album, timestamp=T0 + timedelta(minutes=minutes))


@pytest.fixture
def store():
    return MemoryStore()


class TestUsers:
    def test_first_user_admin_unless_explicit(self, store):
        first = store.create_user("first", "h")
        second = store.create_user("second", "h")
        forced = store.create_user("forced", "h", is_admin=True)

        assert first.is_admin is True
        assert second.is_admin is False
        assert forced.is_admin is True

    def test_explicit_non_admin_on_empty_store(self, store):
        assert store.create_user("first", "h", is_admin=False).is_admin is False

    def test_duplicate_username_violates_constraint(self, store):
        store.create_user("alice", "h")
        with pytest.raises(ConstraintViolation):
            store.create_user("alice", "h")

    def test_ids_are_never_reused(self, store):
        alice = store.create_user("alice", "h")
        store.delete_user(alice.id)
        bob = store.create_user("bob", "h")
        assert bob.id != alice.id

    def test_delete_cascades(self, store):
        alice = store.create_user("alice", "h")
        store.create_token(alice.id, "tok", "session")
        store.add_scrobbles(alice.id, [_play("A", "x")])

        assert store.delete_user(alice.id) is True
        assert store.get_active_token_owner("tok") is None
        assert store.scrobbles == {}
        assert store.delete_user(alice.id) is False


class TestTokens:
    def test_token_for_missing_user(self, store):
        with pytest.raises(ConstraintViolation):
            store.create_token(42, "tok")

    def test_revocation_is_scoped_to_owner(self, store):
        alice = store.create_user("alice", "h")
        bob = store.create_user("bob", "h")
        record = store.create_token(alice.id, "tok")

        assert store.revoke_token(record.id, bob.id) is False
        assert store.revoke_token_value("tok", bob.id) is False
        assert store.get_active_token_owner("tok") == alice.id
        assert store.revoke_token(record.id, alice.id) is True
        assert store.get_active_token_owner("tok") is None

    def test_list_tokens_newest_first(self, store):
        alice = store.create_user("alice", "h")
        first = store.create_token(alice.id, "t1", "one")
        second = store.create_token(alice.id, "t2", "two")
        assert [t.id for t in store.list_tokens(alice.id)] == [second.id, first.id]


class TestScrobbleQueries:
    @pytest.fixture
    def alice(self, store):
        user = store.create_user("alice", "h")
        store.add_scrobbles(
            user.id,
            [
                _play("Beta", "b1", 0),
                _play("Alpha", "a1", 1),
                _play("Alpha", "a2", 2),
                _play("Beta", "b1", 3),
                _play("Gamma", "g1", 4),
            ],
        )
        return user

    def test_recent_newest_first_with_cursor(self, store, alice):
        recent = store.recent_scrobbles(alice.id, 2)
        assert [s.track for s in recent] == ["g1", "b1"]

        older = store.recent_scrobbles(alice.id, 10, before=T0 + timedelta(minutes=2))
        assert [s.track for s in older] == ["a1", "b1"]

    def test_top_artists_ties_sorted_by_name(self, store, alice):
        top = store.top_artists(alice.id, 10)
        assert [(t.artist, t.count) for t in top] == [("Alpha", 2), ("Beta", 2), ("Gamma", 1)]

    def test_top_tracks_with_range(self, store, alice):
        top = store.top_tracks(
            alice.id, 10, start=T0 + timedelta(minutes=1), end=T0 + timedelta(minutes=3)
        )
        assert [(t.artist, t.track, t.count) for t in top] == [
            ("Alpha", "a1", 1),
            ("Alpha", "a2", 1),
            ("Beta", "b1", 1),
        ]

    def test_scrobbles_are_per_user(self, store, alice):
        bob = store.create_user("bob", "h")
        assert store.recent_scrobbles(bob.id, 10) == []
        assert store.top_artists(bob.id, 10) == []

    def test_summaries_and_stats(self, store, alice):
        store.create_user("bob", "h")
        summary = store.user_summary(alice.id)
        assert summary.scrobble_count == 5
        assert summary.last_scrobble == T0 + timedelta(minutes=4)

        stats = store.system_stats()
        assert stats.total_users == 2
        assert stats.total_scrobbles == 5
        assert stats.total_artists == 3
        assert stats.total_tracks == 4
        assert [(u.username, u.scrobble_count) for u in stats.top_users] == [("alice", 5)]

    def test_delete_scrobble(self, store, alice):
        target = store.recent_scrobbles(alice.id, 1)[0]
        assert store.delete_scrobble(target.id) is True
        assert store.delete_scrobble(target.id) is False
