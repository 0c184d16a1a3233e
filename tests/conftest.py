"""
Shared fixtures: an in-memory database per test, seeded with a small group
tree, a role/permission catalog and a few users.

Group tree:

    root
    └── child
        └── grandchild
"""
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, insert, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database.engine import enable_sqlite_savepoints, get_db, init_db
from app.features.groups.hierarchy import SqlGroupHierarchy
from app.features.groups.models import Group
from app.features.permissions.models import Permission, Role, RoleCustom, role_permission, user_permission
from app.features.permissions.subject import Subject
from app.features.users.auth import create_access_token
from app.features.users.models import User


PERMISSIONS = ["posts.read", "posts.write", "posts.delete", "users.read", "users.manage"]

# Declared on the root group; every descendant sees them through the chain
ROLE_GRANTS = {
    "editor": ["posts.read", "posts.write"],
    "moderator": ["posts.write", "posts.delete"],
    "admin": ["users.read", "users.manage"],
}

CUSTOM_ROLE_GRANTS = {
    "reviewer": ["posts.read", "users.read"],
}


def _enforce_foreign_keys(dbapi_connection, _connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest_asyncio.fixture
async def engine(request):
    engine = enable_sqlite_savepoints(
        create_async_engine(
            "sqlite+aiosqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    )
    if request.node.get_closest_marker("foreign_keys"):
        event.listen(engine.sync_engine, "connect", _enforce_foreign_keys)
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def groups(db):
    db.add_all([
        Group(id="root", name="Root"),
        Group(id="child", name="Child", parent_id="root"),
        Group(id="grandchild", name="Grandchild", parent_id="child"),
        Group(id="other", name="Other tree"),
    ])
    await db.commit()
    return {"root": "root", "child": "child", "grandchild": "grandchild", "other": "other"}


@pytest_asyncio.fixture
async def catalog(db, groups):
    db.add_all(Permission(slug=slug, name=slug) for slug in PERMISSIONS)
    db.add_all(Role(slug=slug, name=slug.title()) for slug in ROLE_GRANTS)
    db.add_all(RoleCustom(group_id="root", slug=slug, name=slug.title()) for slug in CUSTOM_ROLE_GRANTS)
    await db.flush()

    rows = [
        {"group_id": "root", "roles_slug": role, "permissions_slug": permission}
        for role, permissions in {**ROLE_GRANTS, **CUSTOM_ROLE_GRANTS}.items()
        for permission in permissions
    ]
    await db.execute(insert(role_permission), rows)
    await db.commit()


@pytest_asyncio.fixture
async def users(db, groups):
    alice = User(id="alice", email="alice@example.com", name="Alice", current_group_id="root")
    bob = User(id="bob", email="bob@example.com", name="Bob", current_group_id="child")
    admin = User(id="admin", email="admin@example.com", name="Admin", is_admin=True, current_group_id="root")
    db.add_all([alice, bob, admin])
    await db.commit()
    return {"alice": alice, "bob": bob, "admin": admin}


@pytest.fixture
def subject_for(db, catalog, users):
    """Build a Subject wired to the SQL group hierarchy."""
    def factory(user_id: str = "alice", group_id: str = "root") -> Subject:
        return Subject(db, user_id, group_id, SqlGroupHierarchy(db))
    return factory


@pytest.fixture
def subject(subject_for) -> Subject:
    return subject_for()


@pytest.fixture
def permission_rows(db):
    """(slug, added_on_user) for every user_permission row of a user in a group."""
    async def fetch(user_id: str = "alice", group_id: str = "root") -> set[tuple[str, bool]]:
        result = await db.execute(
            select(user_permission.c.permissions_slug, user_permission.c.added_on_user).where(
                user_permission.c.user_id == user_id,
                user_permission.c.group_id == group_id
            )
        )
        return {(row.permissions_slug, row.added_on_user) for row in result}
    return fetch


@pytest.fixture
def app(db):
    from app.main import app

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_headers(users):
    def factory(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}
    return factory
