"""Tests for the in-memory room registry."""

import pytest

from registry import RoomRegistry


class TestJoinAndLeave:
    """Membership bookkeeping."""

    def test_join_creates_room(self, registry):
        assert registry.join("r1", "alice") is True
        assert registry.exists("r1")
        assert registry.members_of("r1") == {"alice"}

    def test_join_is_idempotent(self, registry):
        registry.join("r1", "alice")
        assert registry.join("r1", "alice") is False
        assert registry.members_of("r1") == {"alice"}

    @pytest.mark.parametrize("sequence", [
        ["a", "a", "b", "a"],
        ["b", "b", "b"],
        ["a", "b", "c", "b", "a", "c"],
    ])
    def test_members_never_duplicated(self, registry, sequence):
        for user_id in sequence:
            registry.join("r1", user_id)
        assert sorted(registry.members_of("r1")) == sorted(set(sequence))

    def test_leave_unknown_room_is_noop(self, registry):
        assert registry.leave("missing", "alice") is False
        assert not registry.exists("missing")

    def test_leave_unknown_member_is_noop(self, registry):
        registry.join("r1", "alice")
        assert registry.leave("r1", "bob") is False
        assert registry.members_of("r1") == {"alice"}

    def test_emptied_room_stays_until_swept(self, registry):
        registry.join("r1", "alice")
        registry.leave("r1", "alice")
        assert registry.exists("r1")
        assert registry.members_of("r1") == frozenset()

    def test_members_of_returns_snapshot(self, registry):
        registry.join("r1", "alice")
        members = registry.members_of("r1")
        registry.join("r1", "bob")
        assert members == {"alice"}

    def test_members_of_unknown_room_is_empty(self, registry):
        assert registry.members_of("nope") == frozenset()


class TestLeaveAll:
    """Removing a user from every room at once."""

    def test_leave_all_reports_rooms_left(self, registry):
        registry.join("r1", "alice")
        registry.join("r2", "alice")
        registry.join("r2", "bob")
        registry.join("r3", "bob")

        left = registry.leave_all("alice")

        assert sorted(left) == ["r1", "r2"]
        assert registry.rooms_of("alice") == []
        assert registry.members_of("r2") == {"bob"}
        assert registry.members_of("r3") == {"bob"}

    def test_leave_all_for_stranger(self, registry):
        registry.join("r1", "alice")
        assert registry.leave_all("zed") == []


class TestInvitations:
    """Pending incoming calls."""

    def test_first_invite_rings(self, registry):
        registry.join("r1", "alice")
        assert registry.mark_invited("r1", "bob") is True

    def test_repeated_invite_does_not_ring(self, registry):
        registry.join("r1", "alice")
        registry.mark_invited("r1", "bob")
        registry.join("r1", "carol")
        assert registry.mark_invited("r1", "bob") is False

    def test_member_is_not_invited(self, registry):
        registry.join("r1", "alice")
        registry.join("r1", "bob")
        assert registry.mark_invited("r1", "bob") is False

    def test_join_by_callee_resets_invitation(self, registry):
        registry.join("r1", "alice")
        registry.mark_invited("r1", "bob")
        registry.join("r1", "bob")
        registry.leave("r1", "bob")
        assert registry.mark_invited("r1", "bob") is True

    def test_invitation_survives_empty_room(self, registry):
        registry.join("r1", "alice")
        registry.mark_invited("r1", "bob")
        registry.leave("r1", "alice")
        registry.join("r1", "carol")
        assert registry.mark_invited("r1", "bob") is False

    def test_invitation_survives_sweep(self, registry):
        registry.join("r1", "alice")
        registry.mark_invited("r1", "bob")
        registry.leave("r1", "alice")
        registry.sweep_empty()

        assert registry.pending_invites("r1") == {"bob"}
        registry.join("r1", "carol")
        assert registry.mark_invited("r1", "bob") is False

    def test_callee_join_clears_invitation(self, registry):
        registry.join("r1", "alice")
        registry.mark_invited("r1", "bob")
        registry.join("r1", "bob")
        assert registry.pending_invites("r1") == frozenset()


class TestSweep:
    """Periodic removal of dead rooms."""

    def test_sweep_removes_only_empty_rooms(self):
        registry = RoomRegistry()
        registry.join("live", "alice")
        registry.join("dead", "bob")
        registry.leave("dead", "bob")

        assert registry.sweep_empty() == ["dead"]
        assert registry.room_ids() == ["live"]
        assert len(registry) == 1

    def test_sweep_with_nothing_to_do(self, registry):
        registry.join("r1", "alice")
        assert registry.sweep_empty() == []
