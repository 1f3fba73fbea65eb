"""Utility CLI to create or promote an administrator inside a tenant."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Sequence

from dotenv import load_dotenv

from contribution_tracker import repository
from contribution_tracker.core.bootstrap import ensure_default_tenant, ensure_schema
from contribution_tracker.core.config import Settings, get_settings
from contribution_tracker.core.db import Database, safe_url
from contribution_tracker.schemas import UserRecord

logger = logging.getLogger("tools.create_admin")

DEFAULT_FULL_NAME = "Administrator"
DEFAULT_ACCOUNT = "System"
DEFAULT_SALE = "Admin"


def ensure_admin(
    database: Database,
    settings: Settings,
    *,
    email: str,
    password: str,
    full_name: str = DEFAULT_FULL_NAME,
    staff_id: str | None = None,
    tenant_prefix: str | None = None,
) -> tuple[UserRecord, bool]:
    """Create an approved admin, or promote the existing account with ``email``.

    Args:
        database: Connected client; the schema is created when missing.
        settings: Provides the default tenant prefix.
        email: Login e-mail; looked up across every tenant.
        password: Raw password, always (re)applied.
        full_name: Display name for a new account.
        staff_id: Staff id for a new account; derived from the e-mail when
            omitted.
        tenant_prefix: Tenant to create the account in; the default tenant
            when omitted.

    Returns:
        The admin record and whether it was newly created.
    """

    ensure_schema(database)
    default_tenant_id = ensure_default_tenant(database, settings)

    tenant_id = default_tenant_id
    if tenant_prefix and tenant_prefix != settings.default_tenant_prefix:
        tenant = repository.get_tenant_by_prefix(database, tenant_prefix)
        if tenant is None:
            raise ValueError(f"Tenant {tenant_prefix!r} does not exist")
        tenant_id = tenant.id

    normalized_email = repository.normalize_email(email)
    row = database.query_one("SELECT id FROM users WHERE email = ?", [normalized_email])
    if row is not None:
        user_id = str(row["id"])
        repository.update_user(
            database, user_id, {"role": "admin", "status": "approved", "canViewOthers": True}
        )
        repository.set_user_password(database, user_id, password)
        logger.info("Promoted existing user %s (id=%s) to admin", normalized_email, user_id)
        created = False
    else:
        user_id = repository.create_user(
            database,
            tenant_id=tenant_id,
            full_name=full_name,
            staff_id=staff_id or normalized_email.split("@", 1)[0].upper(),
            email=normalized_email,
            password=password,
            involved_account_names=[DEFAULT_ACCOUNT],
            involved_sale_names=[DEFAULT_SALE],
            involved_sale_emails=[normalized_email],
            role="admin",
            status="approved",
            can_view_others=True,
        )
        logger.info("Created admin %s (id=%s)", normalized_email, user_id)
        created = True

    user = repository.get_user(database, user_id)
    if user is None:  # pragma: no cover - row was just written
        raise RuntimeError(f"Admin {normalized_email} could not be read back")
    return user, created


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--email", required=True, help="Login e-mail of the admin")
    parser.add_argument("--password", required=True, help="Password to set")
    parser.add_argument("--full-name", default=DEFAULT_FULL_NAME, help="Display name")
    parser.add_argument("--staff-id", default=None, help="Staff id (derived from the e-mail by default)")
    parser.add_argument(
        "--tenant-prefix", default=None, help="Tenant to place a new admin in (default tenant otherwise)"
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Script entrypoint; returns the process exit code."""

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = build_parser().parse_args(argv)

    settings = get_settings()
    target = safe_url(settings.database_url) if settings.database_url else settings.db_path
    logger.info("Using database %s", target)

    database = Database.from_settings(settings)
    try:
        user, created = ensure_admin(
            database,
            settings,
            email=args.email,
            password=args.password,
            full_name=args.full_name,
            staff_id=args.staff_id,
            tenant_prefix=args.tenant_prefix,
        )
    except ValueError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        database.dispose()

    logger.info("Admin %s (%s)", "created" if created else "updated", user.email)
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI execution
    raise SystemExit(main())
