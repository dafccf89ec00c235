"""
Script to create (or re-key) an admin account.
Run this after creating the database to add the initial admin.

    python setup_admin.py <emp_id> <password> [team]
"""

import sys

from auth import ROLE_ADMIN, hash_password
from database.db import get_db
import config


def setup_admin(emp_id, password, team=None):
    """Create admin account with hashed password, or reset an existing one."""
    if len(password) < config.MIN_PASSWORD_LENGTH:
        raise SystemExit(f'Password must be at least {config.MIN_PASSWORD_LENGTH} characters.')
    team = team or config.DEFAULT_TEAM
    password_hash = hash_password(password)

    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "INSERT INTO accounts (emp_id, name, role, team, is_active, password_hash) "
                "VALUES (%s, %s, %s, %s, 1, %s) "
                "ON DUPLICATE KEY UPDATE role = VALUES(role), is_active = 1, "
                "password_hash = VALUES(password_hash)",
                (emp_id, 'Administrator', ROLE_ADMIN, team, password_hash)
            )
    print(f"Admin '{emp_id}' (team {team}) created/updated successfully!")


if __name__ == '__main__':
    if len(sys.argv) < 3:
        raise SystemExit(__doc__)
    setup_admin(sys.argv[1], sys.argv[2], sys.argv[3] if len(sys.argv) > 3 else None)
