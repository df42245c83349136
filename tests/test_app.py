from collections.abc import Generator
from datetime import date

import httpx
import pytest
from fastapi.testclient import TestClient

from personal_cfo.app import create_app

TODAY = date.today().isoformat()

def _backend_routes() -> dict[tuple[str, str], tuple[int, object]]:
    return {
        ("GET", "/api/v1/transactions/"): (200, [
            {"id": "t1", "merchant": "Wong", "amount": "35.00", "currency": "PEN",
             "transaction_date": TODAY, "category": "Food"},
            {"id": "t2", "merchant": "Netflix", "amount": "10.00", "currency": "USD",
             "transaction_date": TODAY, "category": "Food"},
        ]),
        ("GET", "/api/v1/budgets/"): (200, [
            {"id": "b1", "category": "Food", "limit_amount": "100", "currency": "PEN", "month": TODAY[:7]},
        ]),
        ("GET", "/api/v1/budgets/alerts"): (200, []),
        ("GET", "/api/v1/analytics/category"): (200, [
            {"category": "Food", "amount": "35.00", "currency": "PEN", "transaction_count": 1},
        ]),
        ("GET", "/api/v1/statements/"): (200, [
            {"id": "s1", "filename": "jan.pdf", "status": "processing", "extraction_status": "processing"},
        ]),
        ("POST", "/api/v1/statements/s1/extract"): (200, {
            "statement_id": "s1", "transactions_found": 5, "status": "completed",
        }),
        ("GET", "/api/v1/statements/s1/status"): (200, {
            "statement_id": "s1", "status": "completed",
            "extraction_status": "completed", "categorization_status": "completed",
        }),
        ("GET", "/api/v1/statements/missing/status"): (404, {"detail": "Statement not found"}),
        ("DELETE", "/api/v1/transactions/t1"): (204, None),
        ("DELETE", "/api/v1/transactions/missing"): (404, {"detail": "Transaction not found"}),
        ("GET", "/api/v1/user-settings/excluded-keywords/"): (200, {
            "items": [{"id": "k1", "keyword": "pago tarjeta"}],
        }),
        ("GET", "/api/v1/currencies"): (200, ["PEN", "USD"]),
    }


def backend(request: httpx.Request) -> httpx.Response:
    if "exchangerate" in request.url.host:
        return httpx.Response(503)

    path = request.url.path
    if path == "/health":
        return httpx.Response(200, json={"status": "healthy"})
    if path == "/api/v1/auth/login":
        return httpx.Response(200, json={"access_token": "good", "token_type": "bearer"})
    if request.headers.get("Authorization") != "Bearer good":
        return httpx.Response(401, json={"detail": "Not authenticated"})

    status, payload = _backend_routes().get((request.method, path), (404, {"detail": "Not Found"}))
    if payload is None:
        return httpx.Response(status)
    return httpx.Response(status, json=payload)


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Generator[TestClient, None, None]:
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.delenv("EXCHANGE_RATE_API_KEY", raising=False)
    monkeypatch.delenv("APP_ENV", raising=False)
    http = httpx.AsyncClient(transport=httpx.MockTransport(backend))
    app = create_app(http_client=http)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def authed(client: TestClient) -> TestClient:
    client.cookies.set("access_token", "good")
    return client


def test_login_sets_strict_secure_cookie(client: TestClient) -> None:
    response = client.post("/login", json={"email": "ana@example.pe", "password": "pw"})

    assert response.status_code == 200
    assert response.json()["redirect_to"] == "/dashboard"
    cookie = response.headers["set-cookie"].lower()
    assert "access_token=good" in cookie
    assert "max-age=604800" in cookie
    assert "secure" in cookie
    assert "samesite=strict" in cookie


def test_logout_clears_cookie(authed: TestClient) -> None:
    response = authed.post("/logout")
    assert response.status_code == 200
    cookie = response.headers["set-cookie"].lower()
    assert 'access_token=""' in cookie or "access_token=;" in cookie
    assert "max-age=0" in cookie


def test_unauthorized_redirects_to_login(client: TestClient) -> None:
    client.cookies.set("access_token", "expired")
    response = client.get("/dashboard", follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "/login"
    assert "max-age=0" in response.headers["set-cookie"].lower()


def test_development_bypass_returns_401_json(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "development")
    response = client.get("/transactions", follow_redirects=False)

    assert response.status_code == 401
    assert response.json() == {"detail": "Not authenticated"}

    redirected = client.get("/budget", follow_redirects=False)
    assert redirected.status_code == 303


def test_dashboard_converts_with_fixed_fallback(authed: TestClient) -> None:
    data = authed.get("/dashboard", params={"currency": "PEN"}).json()

    assert data["currency"] == "PEN"
    assert data["exchange_rate"]["using_fixed_fallback"] is True
    assert data["total_spent"]["amount"] == "70.00"
    assert data["total_spent"]["formatted"] == "S/70.00"
    assert data["monthly_spending"][-1]["amount"] == "70.00"
    assert data["category_totals"][0]["category"] == "Food"
    assert data["budgets"][0]["percentage"] == 35
    assert data["budgets"][0]["level"] == "ok"


def test_dashboard_in_usd(authed: TestClient) -> None:
    data = authed.get("/dashboard", params={"currency": "usd"}).json()
    assert data["total_spent"]["amount"] == "20.00"
    assert data["total_spent"]["formatted"] == "$20.00"


def test_dashboard_in_currency_without_rate_withholds_totals(authed: TestClient) -> None:
    data = authed.get("/dashboard", params={"currency": "EUR"}).json()

    assert data["total_spent"]["amount"] is None
    assert data["total_spent"]["formatted"] == "n/a"
    assert data["total_spent"]["unconverted_currencies"] == ["PEN", "USD"]
    latest = data["monthly_spending"][-1]
    assert latest["amount"] == "0.00"
    assert latest["complete"] is False
    assert latest["unconverted_currencies"] == ["PEN", "USD"]


def test_dashboard_rejects_out_of_range_months(authed: TestClient) -> None:
    assert authed.get("/dashboard", params={"months": 0}).status_code == 422
    assert authed.get("/dashboard", params={"months": 100000}).status_code == 422
    assert len(authed.get("/dashboard", params={"months": 36}).json()["monthly_spending"]) == 36


def test_bulk_delete_keeps_failed_selection(authed: TestClient) -> None:
    response = authed.post("/transactions/bulk-delete", json={"selected_ids": ["t1", "missing"]})

    assert response.status_code == 200
    assert response.json() == {
        "deleted_ids": ["t1"],
        "failed_ids": ["missing"],
        "selected_ids": ["missing"],
    }

    notifications = authed.get("/notifications").json()
    assert [(n["kind"], n["message"]) for n in notifications] == [
        ("success", "Deleted 1 transaction"),
        ("warning", "Failed to delete 1 transaction"),
    ]
    assert authed.get("/notifications").json() == []


def test_statements_carry_badges(authed: TestClient) -> None:
    data = authed.get("/statements").json()
    statement = data["statements"][0]
    assert statement["badge"] == "Extracting"
    assert statement["in_progress"] is True
    assert data["has_active"] is True


def test_extract_route_runs_step(authed: TestClient) -> None:
    response = authed.post("/statements/s1/extract", json={"card_id": "c1"})
    assert response.status_code == 200
    assert response.json()["transactions_found"] == 5


def test_backend_error_is_forwarded(authed: TestClient) -> None:
    response = authed.get("/statements/missing/status")
    assert response.status_code == 404
    assert response.json() == {"detail": "Statement not found"}


def test_excluded_keywords_and_currencies_routes(authed: TestClient) -> None:
    listed = authed.get("/excluded-keywords").json()
    assert [item["keyword"] for item in listed["items"]] == ["pago tarjeta"]
    assert authed.post("/excluded-keywords", json={"keyword": "   "}).status_code == 422
    assert authed.get("/currencies").json() == ["PEN", "USD"]


def test_exchange_rate_and_health(client: TestClient) -> None:
    rate = client.get("/exchange-rate").json()
    assert rate["source"] == "fixed"
    assert rate["pen_per_usd"] == 3.5
    assert rate["symbols"] == {"PEN": "S/", "USD": "$"}

    assert client.get("/health").json() == {"status": "ok", "backend": {"status": "healthy"}}


def test_unknown_cookies_do_not_accumulate_sessions(client: TestClient) -> None:
    for index in range(20):
        client.cookies.set("access_token", f"garbage-{index}")
        assert client.get("/notifications").json() == []
        client.get("/dashboard", follow_redirects=False)

    assert len(client.app.state.sessions) == 0
    assert len(client.app.state.pollers) == 0


def test_rejected_token_drops_its_session(authed: TestClient) -> None:
    sessions = authed.app.state.sessions
    authed.get("/dashboard")
    assert len(sessions) == 1

    authed.cookies.set("access_token", "expired")
    response = authed.get("/statements", follow_redirects=False)

    assert response.status_code == 303
    assert len(sessions) == 1
    assert sessions.get("expired", create=False).persistent is False
