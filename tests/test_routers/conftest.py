import pytest
from fastapi.testclient import TestClient

from catalog.core.security import hash_password
from catalog.db.models import AdminUser
from catalog.db.session import get_audit_log, get_db
from catalog.main import app

ADMIN_PASSWORD = "guclu-bir-parola"


@pytest.fixture
def client(session_factory, audit):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_audit_log] = lambda: audit
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_user(db) -> AdminUser:
    admin = AdminUser(user_name="yonetici", password_hash=hash_password(ADMIN_PASSWORD), full_name="Site Yöneticisi")
    db.add(admin)
    db.commit()
    return admin


@pytest.fixture
def admin_client(client, admin_user):
    response = client.post("/admin/login", json={"user_name": "yonetici", "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return client
