"""
User directory.

Identity records referenced by accounts (owner) and loans (borrower,
processing staff member). Credentials live with the external authenticator
and are never stored here.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import NotFound


class UserRole(Enum):
    CUSTOMER = "customer"
    STAFF = "staff"


@dataclass
class User(StorageRecord):
    username: str
    name: str
    role: UserRole = UserRole.CUSTOMER

    @property
    def is_staff(self) -> bool:
        return self.role == UserRole.STAFF


class UserDirectory:
    """Creates and looks up users"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "users"

    def create_user(self, username: str, name: str, role: UserRole = UserRole.CUSTOMER) -> User:
        """
        Create a user record

        Raises:
            ValueError: If username is empty or already taken
        """
        if not username or not name:
            raise ValueError("Username and name are required")

        now = datetime.now(timezone.utc)
        user = User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            username=username,
            name=name,
            role=role
        )

        with self.storage.atomic():
            if self.storage.find(self.table_name, {"username": username}):
                raise ValueError(f"Username {username} already exists")
            self.storage.save(self.table_name, user.id, user.to_dict())
            self.audit_trail.log_event(
                event_type=AuditEventType.USER_CREATED,
                entity_type="user",
                entity_id=user.id,
                metadata={"username": username, "role": role.value}
            )

        return user

    def get_user(self, user_id: str) -> Optional[User]:
        data = self.storage.load(self.table_name, user_id)
        if data:
            return self._user_from_dict(data)
        return None

    def require_user(self, user_id: str) -> User:
        user = self.get_user(user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def get_users(self, user_ids: List[str]) -> Dict[str, User]:
        """Map of user id to user for the ids that exist"""
        users = {}
        for user_id in set(user_ids):
            user = self.get_user(user_id)
            if user:
                users[user_id] = user
        return users

    def _user_from_dict(self, data: Dict) -> User:
        return User(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            username=data['username'],
            name=data['name'],
            role=UserRole(data['role'])
        )
