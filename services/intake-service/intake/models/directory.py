from enum import Enum

from intake.store.schema import TableSchema

USERS_TABLE = "Users"
TEAMS_TABLE = "Teams"
AUDIT_TABLE = "AuditLog"

ALL_TYPES = "all"

class Role(str, Enum):
    ADMIN = "Admin"
    USER = "User"

class UserStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"

# Strict: a shifted users header would put a password hash in the role column
USER_SCHEMA = TableSchema(
    USERS_TABLE,
    required={
        "username": "Username",
        "password_hash": "Password Hash",
        "salt": "Salt",
        "role": "Role",
        "status": "Status",
        "team": "Team",
        "allowed_types": "Allowed Types",
    },
    strict=True,
)

TEAM_SCHEMA = TableSchema(TEAMS_TABLE, required={"name": "Team Name"})

AUDIT_SCHEMA = TableSchema(
    AUDIT_TABLE,
    required={
        "timestamp": "Timestamp",
        "username": "Username",
        "action": "Action",
        "details": "Details",
    },
)
