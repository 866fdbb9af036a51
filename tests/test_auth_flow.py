"""End-to-end tests for the HTTP login flow (JSON API and HTML forms).

Covers:
- register -> login -> authenticated request -> logout
- wrong secret and unknown identifier get the same rejection, no cookie
- two logins for one identity are independent sessions
- session cookie attributes
- stale cookies are cleared, presented tokens are replaced on login
- registration gating, duplicates, input validation
- session data bag (visit counter) and password change revoking other sessions
- store outage answers 503, never 401
- form routes redirect safely (no open redirect)
"""

from sqlalchemy import text

from conftest import COOKIE_NAME, login, register, use_token
from core.config import get_settings

ALICE = "alice@example.com"
SECRET = "s3cr3t!"


def _session_set_cookie(resp) -> str | None:
    for value in resp.headers.get_list("set-cookie"):
        if value.startswith(f"{COOKIE_NAME}="):
            return value
    return None


# ---------------------------------------------------------------------------
# Reference scenarios
# ---------------------------------------------------------------------------


def test_register_login_and_resolve(client) -> None:
    register(client, ALICE, SECRET)

    resp, token = login(client, ALICE, SECRET)

    assert resp.status_code == 200
    assert resp.json()["identifier"] == ALICE
    assert token
    use_token(client, token)
    me = client.get("/api/v1/auth/me")
    assert me.status_code == 200
    assert me.json()["identifier"] == ALICE


def test_wrong_secret_rejected_without_token(client) -> None:
    register(client, ALICE, SECRET)

    resp, token = login(client, ALICE, "wrong-pass")

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "invalid_credentials"
    assert token is None
    assert _session_set_cookie(resp) is None


def test_unknown_identifier_rejected_identically(client) -> None:
    register(client, ALICE, SECRET)

    wrong, _ = login(client, ALICE, "wrong-pass")
    unknown, token = login(client, "bob@example.com", "anything")

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json()
    assert token is None


def test_logout_destroys_session(client) -> None:
    register(client, ALICE, SECRET)
    _, t1 = login(client, ALICE, SECRET)
    use_token(client, t1)

    out = client.post("/api/v1/auth/logout")
    assert out.status_code == 200

    use_token(client, t1)
    assert client.get("/api/v1/auth/me").status_code == 401


def test_two_logins_are_independent(client) -> None:
    register(client, ALICE, SECRET)
    use_token(client, None)
    _, t1 = login(client, ALICE, SECRET)
    use_token(client, None)
    _, t2 = login(client, ALICE, SECRET)
    assert t1 != t2

    use_token(client, t1)
    client.post("/api/v1/auth/logout")

    use_token(client, t2)
    assert client.get("/api/v1/auth/me").status_code == 200
    use_token(client, t1)
    assert client.get("/api/v1/auth/me").status_code == 401


# ---------------------------------------------------------------------------
# Cookie handling
# ---------------------------------------------------------------------------


def test_session_cookie_attributes(client) -> None:
    register(client, ALICE, SECRET)
    resp, _ = login(client, ALICE, SECRET)

    cookie = _session_set_cookie(resp).lower()
    assert "httponly" in cookie
    assert "secure" in cookie
    assert "samesite=strict" in cookie
    assert f"max-age={get_settings().session_ttl_seconds}" in cookie
    assert resp.headers["cache-control"] == "no-store"


def test_stale_cookie_is_cleared(client) -> None:
    use_token(client, "not-a-live-token")

    resp = client.get("/api/v1/auth/me")

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"
    assert "max-age=0" in _session_set_cookie(resp).lower()


def test_anonymous_request_sets_no_cookie(client) -> None:
    use_token(client, None)
    resp = client.get("/api/v1/auth/me")
    assert resp.status_code == 401
    assert _session_set_cookie(resp) is None


def test_login_replaces_presented_token(client) -> None:
    register(client, ALICE, SECRET)
    _, first = login(client, ALICE, SECRET)
    use_token(client, first)

    _, second = login(client, ALICE, SECRET)

    assert second and second != first
    use_token(client, first)
    assert client.get("/api/v1/auth/me").status_code == 401


def test_registration_ignores_presented_token(client) -> None:
    register(client, ALICE, SECRET)
    _, token = login(client, ALICE, SECRET)
    use_token(client, token)

    resp = client.post("/api/v1/auth/register", json={"identifier": "carol@example.com", "secret": "another1"})

    assert resp.status_code == 201
    assert _session_set_cookie(resp) is None
    me = client.get("/api/v1/auth/me")
    assert me.json()["identifier"] == ALICE


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def test_register_duplicate_returns_409(client) -> None:
    register(client, ALICE, SECRET)
    resp = client.post("/api/v1/auth/register", json={"identifier": "ALICE@example.com", "secret": "other-secret"})
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "duplicate_identifier"


def test_register_disabled_returns_403(client, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "self_registration_enabled", False)
    resp = client.post("/api/v1/auth/register", json={"identifier": ALICE, "secret": SECRET})
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "registration_disabled"


def test_register_short_secret_is_422_without_echo(client) -> None:
    resp = client.post("/api/v1/auth/register", json={"identifier": ALICE, "secret": "abc"})
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "validation_error"
    assert "abc" not in resp.text


# ---------------------------------------------------------------------------
# Session data and password change
# ---------------------------------------------------------------------------


def test_session_visit_counter(client) -> None:
    register(client, ALICE, SECRET)
    _, token = login(client, ALICE, SECRET)
    use_token(client, token)

    first = client.get("/api/v1/session")
    second = client.get("/api/v1/session")

    assert first.status_code == 200
    assert first.json()["visit_count"] == 1
    assert second.json()["visit_count"] == 2
    assert second.json()["identifier"] == ALICE


def test_session_requires_auth(client) -> None:
    use_token(client, None)
    assert client.get("/api/v1/session").status_code == 401


def test_password_change_revokes_other_sessions(client) -> None:
    register(client, ALICE, SECRET)
    use_token(client, None)
    _, current = login(client, ALICE, SECRET)
    use_token(client, None)
    _, other = login(client, ALICE, SECRET)

    use_token(client, current)
    resp = client.post("/api/v1/auth/password", json={"current_secret": SECRET, "new_secret": "n3w-s3cr3t"})
    assert resp.status_code == 200

    assert client.get("/api/v1/auth/me").status_code == 200
    use_token(client, other)
    assert client.get("/api/v1/auth/me").status_code == 401

    use_token(client, None)
    assert login(client, ALICE, SECRET)[0].status_code == 401
    assert login(client, ALICE, "n3w-s3cr3t")[0].status_code == 200


def test_password_change_wrong_current_secret(client) -> None:
    register(client, ALICE, SECRET)
    _, token = login(client, ALICE, SECRET)
    use_token(client, token)

    resp = client.post("/api/v1/auth/password", json={"current_secret": "nope", "new_secret": "n3w-s3cr3t"})

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "invalid_credentials"


# ---------------------------------------------------------------------------
# Outages
# ---------------------------------------------------------------------------


def test_session_store_outage_is_503(client) -> None:
    with client.app.state.session_store.engine.begin() as conn:
        conn.execute(text("DROP TABLE sessions"))
    use_token(client, "any-token")

    resp = client.get("/api/v1/auth/me")

    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "store_unavailable"


def test_credential_store_outage_on_login_is_503(client) -> None:
    with client.app.state.credential_store.engine.begin() as conn:
        conn.execute(text("DROP TABLE identities"))
    use_token(client, None)

    resp, token = login(client, ALICE, SECRET)

    assert resp.status_code == 503
    assert token is None


# ---------------------------------------------------------------------------
# HTML form flow
# ---------------------------------------------------------------------------


def test_form_login_redirects_with_cookie(client) -> None:
    register(client, ALICE, SECRET)
    use_token(client, None)

    resp = client.post("/login", data={"identifier": ALICE, "secret": SECRET})

    assert resp.status_code == 302
    assert resp.headers["location"] == "/login-success"
    token = resp.cookies.get(COOKIE_NAME)
    assert token
    use_token(client, token)
    page = client.get("/login-success")
    assert page.status_code == 200
    assert ALICE in page.text


def test_form_login_failure_redirects_back(client) -> None:
    register(client, ALICE, SECRET)
    use_token(client, None)

    resp = client.post("/login", data={"identifier": ALICE, "secret": "wrong-pass"})

    assert resp.status_code == 302
    assert resp.headers["location"] == "/login?error=invalid_credentials"
    assert _session_set_cookie(resp) is None


def test_form_login_rejects_offsite_next(client) -> None:
    register(client, ALICE, SECRET)
    for target in ("//evil.example", "https://evil.example/", "/\\evil.example"):
        use_token(client, None)
        resp = client.post("/login", params={"next": target}, data={"identifier": ALICE, "secret": SECRET})
        assert resp.headers["location"] == "/login-success"


def test_form_login_honours_local_next(client) -> None:
    register(client, ALICE, SECRET)
    use_token(client, None)
    resp = client.post("/login", params={"next": "/api/v1/session"}, data={"identifier": ALICE, "secret": SECRET})
    assert resp.headers["location"] == "/api/v1/session"


def test_success_page_requires_login(client) -> None:
    use_token(client, None)
    resp = client.get("/login-success")
    assert resp.status_code == 302
    assert resp.headers["location"].startswith("/login?next=")


def test_login_page_does_not_reflect_error_param(client) -> None:
    use_token(client, None)
    resp = client.get("/login", params={"error": "<script>alert(1)</script>"})
    assert resp.status_code == 200
    assert "<script>alert(1)</script>" not in resp.text


def test_form_logout_clears_cookie(client) -> None:
    register(client, ALICE, SECRET)
    _, token = login(client, ALICE, SECRET)
    use_token(client, token)

    resp = client.post("/logout")

    assert resp.status_code == 302
    assert resp.headers["location"] == "/login"
    assert "max-age=0" in _session_set_cookie(resp).lower()
    use_token(client, token)
    assert client.get("/api/v1/auth/me").status_code == 401


def test_form_register(client) -> None:
    use_token(client, None)
    resp = client.post("/register", data={"identifier": ALICE, "secret": SECRET})
    assert resp.headers["location"] == "/login?registered=1"

    again = client.post("/register", data={"identifier": ALICE, "secret": SECRET})
    assert again.headers["location"] == "/register?error=duplicate_identifier"
