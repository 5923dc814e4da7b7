#!/usr/bin/env python3
import os
import secrets
import sys
from datetime import datetime, timedelta, timezone

import psycopg
from psycopg.rows import dict_row

from backend.app.security import hash_password, hash_session_token, new_session_token

SESSION_DAYS = 7


def _generate_password() -> str:
    # URL-safe and copy/paste friendly.
    return secrets.token_urlsafe(16)


def main() -> int:
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        print("bootstrap_superadmin: missing DATABASE_URL", file=sys.stderr)
        return 2

    email = os.getenv("BOOTSTRAP_SUPERADMIN_EMAIL", "superadmin@branchstock.local").strip().lower()
    if not email:
        print("bootstrap_superadmin: BOOTSTRAP_SUPERADMIN_EMAIL is empty", file=sys.stderr)
        return 2

    password = os.getenv("BOOTSTRAP_SUPERADMIN_PASSWORD")
    generated_password = False
    if not password:
        password = _generate_password()
        generated_password = True

    token = new_session_token()
    with psycopg.connect(db_url, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT id FROM users WHERE email = %s", (email,))
                if cur.fetchone():
                    # Idempotent: don't create duplicate users.
                    print("bootstrap_superadmin: user already exists", file=sys.stderr)
                    return 0

                cur.execute(
                    """
                    INSERT INTO users (id, email, hashed_password, role)
                    VALUES (gen_random_uuid(), %s, %s, 'superadmin')
                    RETURNING id
                    """,
                    (email, hash_password(password)),
                )
                user_id = cur.fetchone()["id"]
                # First session so the operator can reach admin endpoints before the
                # auth service is wired up.
                cur.execute(
                    """
                    INSERT INTO auth_sessions (id, user_id, token_hash, expires_at)
                    VALUES (gen_random_uuid(), %s, %s, %s)
                    """,
                    (user_id, hash_session_token(token), datetime.now(timezone.utc) + timedelta(days=SESSION_DAYS)),
                )

    print("BOOTSTRAP_SUPERADMIN_CREATED")
    print(f"email: {email}")
    if generated_password:
        print(f"password: {password}")
    else:
        print("password: (provided via BOOTSTRAP_SUPERADMIN_PASSWORD)")
    print(f"session_token: {token}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
