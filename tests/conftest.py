import os

# 在导入 app 之前设置，避免测试去碰 ./obrastock.db
os.environ.setdefault("secret_key", "test_secret")
os.environ.setdefault("database_url", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy.pool import StaticPool

from obrastock.main import app
from obrastock.db import get_session
from obrastock.models import Tool, User
from obrastock.security import hash_password


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture()
def client(engine):
    def override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(engine):
    def _make(username: str, role: str = "operator", worksite: str | None = None, password: str = "pw") -> User:
        user = User(
            username=username,
            email=f"{username}@example.com",
            password_hash=hash_password(password),
            role=role,
            worksite=worksite,
        )
        with Session(engine) as s:
            s.add(user)
            s.commit()
            s.refresh(user)
        return user

    return _make


@pytest.fixture()
def login(client, make_user):
    """建用户并登录，返回 Authorization 头"""

    def _login(username: str, role: str = "operator", worksite: str | None = None) -> dict:
        make_user(username, role=role, worksite=worksite)
        r = client.post("/auth/login", data={"username": username, "password": "pw"})
        assert r.status_code == 200, r.text
        return {"Authorization": f"Bearer {r.json()['access_token']}"}

    return _login


@pytest.fixture()
def make_tool(engine):
    def _make(code: str, total: int = 5, available: int | None = None, worksite: str | None = None) -> Tool:
        tool = Tool(
            name=f"tool {code}",
            code=code,
            category="power",
            total_quantity=total,
            available_quantity=total if available is None else available,
            origin_worksite=worksite,
        )
        with Session(engine) as s:
            s.add(tool)
            s.commit()
            s.refresh(tool)
        return tool

    return _make
