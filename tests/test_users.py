"""
Tests for the user directory
"""

import pytest

from svbank.storage import InMemoryStorage
from svbank.audit import AuditTrail, AuditEventType
from svbank.users import UserDirectory, UserRole
from svbank.errors import NotFound


class TestUserDirectory:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.users = UserDirectory(self.storage, self.audit_trail)

    def test_create_and_get(self):
        user = self.users.create_user("tara", "Tara Iyer")

        assert user.role == UserRole.CUSTOMER
        assert not user.is_staff
        assert self.users.get_user(user.id) == user
        assert self.users.require_user(user.id).name == "Tara Iyer"

        events = self.audit_trail.get_events_for_entity("user", user.id)
        assert events[0].event_type == AuditEventType.USER_CREATED

    def test_staff_role(self):
        assert self.users.create_user("boss", "Boss", UserRole.STAFF).is_staff

    def test_duplicate_username(self):
        self.users.create_user("tara", "Tara Iyer")
        with pytest.raises(ValueError, match="already exists"):
            self.users.create_user("tara", "Someone Else")

    @pytest.mark.parametrize("username,name", [("", "Name"), ("user", "")])
    def test_required_fields(self, username, name):
        with pytest.raises(ValueError):
            self.users.create_user(username, name)

    def test_missing_user(self):
        assert self.users.get_user("ghost") is None
        with pytest.raises(NotFound):
            self.users.require_user("ghost")

    def test_get_users_skips_unknown_ids(self):
        first = self.users.create_user("a", "A")
        second = self.users.create_user("b", "B")

        found = self.users.get_users([first.id, second.id, first.id, "ghost"])
        assert set(found) == {first.id, second.id}
        assert found[second.id].name == "B"
