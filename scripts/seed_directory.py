"""
Seed a development directory.

Creates (if missing):
    root                    DOMAIN
    +- admin                PRINCIPAL  SUPER_ADMIN
    +- operations           UNIT
       +- operator          PRINCIPAL  USER
       +- auditor           PRINCIPAL  READONLY
       +- ops_admin         PRINCIPAL  OU_ADMIN of operations

Usage:
    python scripts/seed_directory.py
"""

import asyncio

from orgdir.database import async_session_maker, close_db, init_db
from orgdir.kernel.directory.directory_store import DirectoryStore
from orgdir.kernel.models.directory_node import NodeKind
from orgdir.kernel.permissions.roles import Role
from orgdir.logging_config import configure_logging, get_logger

logger = get_logger("seed")

ADMIN_SECRET = "ChangeMe123!"

PRINCIPALS = [
    ("operator", Role.USER, "UserPass123!", "Field Operator"),
    ("auditor", Role.READONLY, "AuditPass123!", "System Auditor"),
    ("ops_admin", Role.OU_ADMIN, "OpsPass123!", "Operations Administrator"),
]


async def _ensure(store: DirectoryStore, parent_id, name, kind, **kwargs):
    node = await store.find_child(parent_id, name)
    if node is not None:
        logger.info("Exists: %s (id=%s, path=%s)", name, node.id, node.path)
        return node
    node = await store.create(name, kind, parent_id=parent_id, **kwargs)
    logger.info("Created: %s (id=%s, path=%s)", name, node.id, node.path)
    return node


async def seed() -> None:
    await init_db()

    async with async_session_maker() as session:
        store = DirectoryStore(session)

        root = await _ensure(
            store, None, "root", NodeKind.DOMAIN,
            attributes={"description": "Root domain"},
        )
        await _ensure(
            store, root.id, "admin", NodeKind.PRINCIPAL,
            secret=ADMIN_SECRET,
            roles=[Role.SUPER_ADMIN],
            attributes={"email": "admin@localhost", "displayName": "System Administrator"},
        )
        operations = await _ensure(store, root.id, "operations", NodeKind.UNIT)

        for name, role, secret, display_name in PRINCIPALS:
            await _ensure(
                store, operations.id, name, NodeKind.PRINCIPAL,
                secret=secret,
                roles=[role],
                administers_node_id=operations.id if role == Role.OU_ADMIN else None,
                attributes={"email": f"{name}@localhost", "displayName": display_name},
            )

        await session.commit()

    logger.info("Seeding complete. Initial login: admin / %s", ADMIN_SECRET)


async def main() -> None:
    configure_logging()
    try:
        await seed()
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
