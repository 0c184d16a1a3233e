"""
Seed script to populate the default role and permission catalog.

Run this script after database initialization to create:
- Default permissions
- Default global roles
- The permissions each role grants in a group

Usage:
    python -m scripts.seed_permissions [group_id]

Role grants are declared per group; without an argument they go to the
default group.
"""
import asyncio
import sys
from sqlalchemy import select, insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db, init_db
from app.features.permissions.models import Permission, Role, role_permission
from app.utils import get_logger


log = get_logger(__name__)


DEFAULT_PERMISSIONS = [
    # Claims
    ("claims.create", "Create new claims"),
    ("claims.read", "View claims"),
    ("claims.update", "Update existing claims"),
    ("claims.approve", "Approve claims"),
    ("claims.submit", "Submit claims"),

    # Reports
    ("reports.read", "View reports"),
    ("reports.generate", "Generate reports"),
    ("reports.export", "Export reports"),

    # User management
    ("users.read", "View user information"),
    ("users.update", "Update user information"),
    ("users.manage-roles", "Attach and detach user roles"),

    # Groups
    ("groups.read", "View groups"),
    ("groups.create", "Create groups"),

    # Billing
    ("billing.read", "View billing information"),
    ("billing.process", "Process billing transactions"),

    # Audit logs
    ("audit.read", "View audit logs"),
]


DEFAULT_ROLES = {
    "admin": {
        "description": "Group administrator with all permissions",
        "permissions": "ALL"  # Special case - gets all permissions
    },
    "billing-manager": {
        "description": "Billing department manager",
        "permissions": [
            "claims.create", "claims.read", "claims.update", "claims.approve", "claims.submit",
            "reports.read", "reports.generate", "reports.export",
            "billing.read", "billing.process",
        ]
    },
    "claims-processor": {
        "description": "Claims processing specialist",
        "permissions": [
            "claims.create", "claims.read", "claims.update", "claims.submit",
            "billing.read",
        ]
    },
    "auditor": {
        "description": "Read-only access to most resources",
        "permissions": [
            "claims.read",
            "reports.read",
            "billing.read",
            "users.read",
            "groups.read",
            "audit.read",
        ]
    },
}


async def seed_permissions(db: AsyncSession) -> set[str]:
    """
    Create default permissions.

    Returns:
        Slugs of every default permission
    """
    log.info("Creating default permissions...")
    created = 0

    for slug, description in DEFAULT_PERMISSIONS:
        if await db.get(Permission, slug) is not None:
            log.debug(f"Permission '{slug}' already exists, skipping")
            continue

        db.add(Permission(slug=slug, name=slug, description=description))
        created += 1
        log.info(f"Created permission: {slug}")

    await db.commit()

    log.info(f"Created {created} permissions")
    return {slug for slug, _ in DEFAULT_PERMISSIONS}


async def seed_roles(db: AsyncSession, permission_slugs: set[str], group_id: str):
    """
    Create default roles and declare the permissions they grant in ``group_id``.

    Args:
        db: Database session
        permission_slugs: Slugs of the seeded permissions
        group_id: Group the role grants apply to
    """
    log.info(f"Creating default roles for group {group_id}...")

    for role_slug, role_config in DEFAULT_ROLES.items():
        if await db.get(Role, role_slug) is None:
            db.add(Role(slug=role_slug, name=role_slug, description=role_config["description"]))
            log.info(f"Created role '{role_slug}'")

        if role_config["permissions"] == "ALL":
            wanted = set(permission_slugs)
        else:
            wanted = set()
            for slug in role_config["permissions"]:
                if slug in permission_slugs:
                    wanted.add(slug)
                else:
                    log.warning(f"Permission '{slug}' not found for role '{role_slug}'")

        result = await db.execute(
            select(role_permission.c.permissions_slug).where(
                role_permission.c.group_id == group_id,
                role_permission.c.roles_slug == role_slug
            )
        )
        missing = sorted(wanted - set(result.scalars().all()))
        if missing:
            await db.execute(
                insert(role_permission),
                [{"group_id": group_id, "roles_slug": role_slug, "permissions_slug": slug} for slug in missing]
            )
        log.info(f"Role '{role_slug}' grants {len(wanted)} permissions in group {group_id}")

    await db.commit()
    log.info("Default roles created successfully")


async def main(group_id: str = config.DEFAULT_GROUP_ID):
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    # Get database session
    async for db in get_db():
        try:
            permission_slugs = await seed_permissions(db)
            await seed_roles(db, permission_slugs, group_id)

            log.info("Permission seeding completed successfully!")
            log.info("")
            log.info("Default roles created:")
            for role_slug, role_config in DEFAULT_ROLES.items():
                log.info(f"  - {role_slug}: {role_config['description']}")

        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main(*sys.argv[1:2]))
