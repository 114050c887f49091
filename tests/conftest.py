"""
Pytest fixtures for directory tests.

The whole test session runs against a temporary SQLite file (aiosqlite);
DATABASE_URL is set before anything from orgdir is imported so the
application engine points at it as well.
"""

import os
import tempfile
from dataclasses import dataclass, field
from typing import AsyncGenerator, Dict

_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
_tmp.close()
TEST_DB_PATH = _tmp.name
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["BCRYPT_ROUNDS"] = "4"

from orgdir.config import get_settings  # noqa: E402

get_settings.cache_clear()

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from orgdir.database import async_session_maker, engine  # noqa: E402
from orgdir.kernel.directory.directory_store import DirectoryStore  # noqa: E402
from orgdir.kernel.events.audit_sink import MemoryAuditSink  # noqa: E402
from orgdir.kernel.identity.caller import CallerIdentity  # noqa: E402
from orgdir.kernel.identity.password import SecretHasher  # noqa: E402
from orgdir.kernel.models import Base, DirectoryNode, NodeKind  # noqa: E402
from orgdir.kernel.permissions.roles import Role  # noqa: E402


def pytest_sessionfinish(session, exitstatus):
    """Clean up the temp DB file (and its WAL side files) after the run."""
    for suffix in ("", "-wal", "-shm"):
        path = TEST_DB_PATH + suffix
        if os.path.exists(path):
            os.unlink(path)


@pytest_asyncio.fixture
async def db_engine():
    """Fresh schema for every test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def hasher() -> SecretHasher:
    return SecretHasher(rounds=4)


@pytest.fixture
def store(db_session: AsyncSession, hasher: SecretHasher) -> DirectoryStore:
    return DirectoryStore(db_session, hasher)


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


SECRETS = {
    "admin": "AdminPass123!",
    "sales_admin": "SalesPass123!",
    "alice": "AlicePass123!",
    "bob": "BobPass123!",
}


@pytest.fixture
def principal_secrets() -> Dict[str, str]:
    return dict(SECRETS)


@dataclass
class SampleTree:
    """
    root                DOMAIN
    +- admin            PRINCIPAL  SUPER_ADMIN
    +- sales            UNIT
    |  +- emea          UNIT
    |  |  +- alice      PRINCIPAL  USER
    |  +- sales_admin   PRINCIPAL  OU_ADMIN of sales
    +- ops              UNIT
       +- bob           PRINCIPAL  READONLY
    """

    nodes: Dict[str, DirectoryNode]
    ids: Dict[str, int] = field(default_factory=dict)
    paths: Dict[str, str] = field(default_factory=dict)
    identities: Dict[str, CallerIdentity] = field(default_factory=dict)

    def __post_init__(self):
        # Snapshot plain values: a service rollback expires the ORM instances
        for name, node in self.nodes.items():
            self.ids[name] = node.id
            self.paths[name] = node.path
            if node.is_principal:
                self.identities[name] = CallerIdentity.from_node(node)

    def __getattr__(self, name: str) -> DirectoryNode:
        nodes = self.__dict__.get("nodes", {})
        if name in nodes:
            return nodes[name]
        raise AttributeError(name)

    def identity(self, name: str) -> CallerIdentity:
        return self.identities[name]


@pytest_asyncio.fixture
async def tree(store: DirectoryStore, db_session: AsyncSession) -> SampleTree:
    nodes: Dict[str, DirectoryNode] = {}
    nodes["root"] = await store.create("root", NodeKind.DOMAIN)
    nodes["admin"] = await store.create(
        "admin",
        NodeKind.PRINCIPAL,
        parent_id=nodes["root"].id,
        secret=SECRETS["admin"],
        roles=[Role.SUPER_ADMIN],
        attributes={"email": "admin@example.com"},
    )
    nodes["sales"] = await store.create("sales", NodeKind.UNIT, parent_id=nodes["root"].id)
    nodes["emea"] = await store.create("emea", NodeKind.UNIT, parent_id=nodes["sales"].id)
    nodes["alice"] = await store.create(
        "alice",
        NodeKind.PRINCIPAL,
        parent_id=nodes["emea"].id,
        secret=SECRETS["alice"],
        roles=[Role.USER],
        attributes={"email": "Alice.Martin@example.com"},
    )
    nodes["sales_admin"] = await store.create(
        "sales_admin",
        NodeKind.PRINCIPAL,
        parent_id=nodes["sales"].id,
        secret=SECRETS["sales_admin"],
        roles=[Role.OU_ADMIN],
        administers_node_id=nodes["sales"].id,
    )
    nodes["ops"] = await store.create("ops", NodeKind.UNIT, parent_id=nodes["root"].id)
    nodes["bob"] = await store.create(
        "bob",
        NodeKind.PRINCIPAL,
        parent_id=nodes["ops"].id,
        secret=SECRETS["bob"],
        roles=[Role.READONLY],
    )
    await db_session.commit()
    return SampleTree(nodes=nodes)
