import pytest
from werkzeug.security import generate_password_hash

from app.ctc import auth as ctc_auth
from app.ctc import create_app
from app.ctc.db import session_scope
from app.ctc.models import Base, User

PASSWORD = "password123"


@pytest.fixture()
def ctc_app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("ADMIN_JWT_SECRET", "test-admin-secret")
    monkeypatch.setenv("DOWNLOAD_ALLOWED_HOSTS", "res.cloudinary.com")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "MEDIA_BASE_URL"):
        monkeypatch.delenv(k, raising=False)

    # Login attempts are tracked per process.
    ctc_auth._login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    yield app
    ctc_auth._login_attempts.clear()


@pytest.fixture()
def client(ctc_app):
    return ctc_app.test_client()


@pytest.fixture()
def make_user(ctc_app):
    """Insert a user directly; returns its id."""

    def _make(email: str, role: str = "user", *, name: str | None = None, password: str = PASSWORD, **fields) -> int:
        with session_scope(ctc_app) as s:
            u = User(
                email=email.lower(),
                name=name or email.split("@")[0].title(),
                password_hash=generate_password_hash(password),
                role=role,
                is_active=True,
                **fields,
            )
            s.add(u)
            s.flush()
            return u.id

    return _make


@pytest.fixture()
def login(client):
    """Log `client` in and attach the session's CSRF token to every following request."""

    def _login(email: str, password: str = PASSWORD) -> dict:
        r = client.post("/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.json
        token = client.get("/auth/csrf").json["csrfToken"]
        client.environ_base["HTTP_X_CSRF_TOKEN"] = token
        return r.json["user"]

    return _login


@pytest.fixture()
def csrf(client):
    """CSRF token for an anonymous session."""

    def _csrf() -> str:
        token = client.get("/auth/csrf").json["csrfToken"]
        client.environ_base["HTTP_X_CSRF_TOKEN"] = token
        return token

    return _csrf
