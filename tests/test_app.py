"""
HTTP tests for the Flask API.
"""
import pytest

from app import create_app

PRODUCT = {"sku": "SKU1", "name": "Shirt, Blue", "base_cost_pkr": 3500, "quantity": 2}
SALE = {
    "transaction_id": "1", "sku": "SKU1", "sale_price_gbp": 20,
    "shipping_gbp": 2, "platform_fee_percent": 15, "sale_date": "2024-05-03",
}


def test_requires_login(tmp_path, db_session):
    client = create_app(tmp_path / "config.xml", db_session).test_client()
    assert client.get("/api/stock").status_code == 401
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/health").status_code == 200


def test_bad_login(tmp_path, db_session):
    client = create_app(tmp_path / "config.xml", db_session).test_client()
    response = client.post("/api/auth/login", json={"username": "admin", "password": "wrong"})
    assert response.status_code == 401
    assert "Invalid username or password" in response.get_json()["error"]


def test_login_logout(client):
    assert client.get("/api/auth/me").get_json() == {"username": "admin"}
    client.post("/api/auth/logout")
    assert client.get("/api/auth/me").status_code == 401


def test_home_shows_both_clocks(client):
    data = client.get("/api/home").get_json()
    assert data["connected"] is True
    assert [c["label"] for c in data["clocks"]] == ["Pakistan Time", "UK Time"]


def test_stock_crud(client):
    response = client.post("/api/stock", json=PRODUCT)
    assert response.status_code == 201
    assert response.get_json()["product"]["sku"] == "SKU1"

    assert client.post("/api/stock", json=PRODUCT).status_code == 409

    data = client.get("/api/stock?q=shirt").get_json()
    assert [p["sku"] for p in data["products"]] == ["SKU1"]
    assert data["stats"]["total_value_gbp"] == pytest.approx(10.0)

    response = client.put("/api/stock/SKU1", json=dict(PRODUCT, quantity=7))
    assert response.status_code == 200
    assert client.get("/api/stock/SKU1").get_json()["product"]["quantity"] == 7

    assert client.delete("/api/stock/SKU1").status_code == 200
    assert client.get("/api/stock/SKU1").status_code == 404
    assert client.delete("/api/stock/SKU1").status_code == 404


def test_validation_errors_name_the_field(client):
    response = client.post("/api/stock", json=dict(PRODUCT, base_cost_pkr="lots"))
    assert response.status_code == 400
    assert response.get_json() == {
        "error": "Base Cost (PKR) must be a valid number", "field": "base_cost_pkr",
    }

    response = client.get("/api/stock?from=yesterday")
    assert response.status_code == 400
    assert response.get_json()["field"] == "from"


def test_non_object_json_body_is_treated_as_empty(client):
    response = client.post("/api/stock", json=["x"])
    assert response.status_code == 400
    assert response.get_json() == {"error": "SKU is required", "field": "sku"}

    assert client.post("/api/logs/purge", json="30").status_code == 400


def test_revenue_flow(client):
    client.post("/api/stock", json=PRODUCT)
    assert client.get("/api/revenue/next-id").get_json()["transaction_id"] == "1"

    preview = client.post("/api/revenue/preview", json=SALE).get_json()["figures"]
    assert preview["net_profit_gbp"] == pytest.approx(5.0)

    response = client.post("/api/revenue", json=SALE)
    assert response.status_code == 201
    assert response.get_json()["sale"]["profit_margin_percent"] == pytest.approx(25.0)
    assert client.post("/api/revenue", json=SALE).status_code == 409

    data = client.get("/api/revenue?sku=SKU1&from=2024-05-01&to=2024-05-31").get_json()
    assert [s["transaction_id"] for s in data["sales"]] == ["1"]
    assert data["stats"]["total_profit"] == pytest.approx(5.0)

    assert client.get("/api/revenue/skus").get_json()["skus"] == ["SKU1"]
    assert client.get("/api/revenue/fees").get_json()["fees"] == [15.0, 20.0, 25.0]

    response = client.put("/api/revenue/1", json=dict(SALE, sale_price_gbp=40, platform_fee_percent=25))
    assert response.get_json()["sale"]["net_profit_gbp"] == pytest.approx(18.0)
    assert client.delete("/api/revenue/1").status_code == 200

    logs = client.get("/api/logs?module=Revenue").get_json()["logs"]
    assert [e["action_type"] for e in logs] == ["Deleted", "Edited", "Added"]
    stats = client.get("/api/logs/stats").get_json()["stats"]
    assert stats["total"] == 4
    assert client.post("/api/logs/purge", json={"days": 30}).get_json()["deleted"] == 0


def test_csv_export(client):
    client.post("/api/stock", json=PRODUCT)
    response = client.get("/api/stock/export")

    assert response.status_code == 200
    assert response.mimetype == "text/csv"
    disposition = response.headers["Content-Disposition"]
    assert disposition.startswith("attachment; filename=stock_export_")
    assert disposition.endswith(".csv")

    lines = response.get_data(as_text=True).splitlines()
    assert lines[0].startswith("SKU,Name,Size")
    assert lines[1].startswith('SKU1,"Shirt, Blue",')

    for path in ("/api/revenue/export", "/api/logs/export"):
        assert client.get(path).mimetype == "text/csv"


def test_offline_redirects_home_but_settings_work(offline_client):
    response = offline_client.get("/api/stock")
    assert response.status_code == 503
    body = response.get_json()
    assert body["redirect"] == "/"
    assert "Settings" in body["error"]

    assert offline_client.get("/api/logs").status_code == 503
    assert offline_client.get("/api/stock/export").status_code == 503

    settings = offline_client.get("/api/settings").get_json()["settings"]
    assert settings["connected"] is False
    assert settings["gbp_to_pkr_rate"] == 350.0

    response = offline_client.put("/api/settings", json={"gbp_to_pkr_rate": "380", "platform_fees": "18"})
    assert response.status_code == 200
    assert response.get_json()["settings"]["platform_fee_options"] == [18.0]

    assert offline_client.get("/api/health").get_json()["status"] == "degraded"


def test_settings_validation_and_defaults(client):
    response = client.put("/api/settings", json={"gbp_to_pkr_rate": "-1"})
    assert response.status_code == 400
    assert response.get_json()["field"] == "gbp_to_pkr_rate"

    defaults = client.get("/api/settings/defaults").get_json()["settings"]
    assert defaults == {"connection_string": "", "gbp_to_pkr_rate": 350.0, "platform_fees": "15,20,25"}


def test_test_connection_endpoint(client, connection_string):
    ok = client.post("/api/settings/test-connection", json={"connection_string": connection_string})
    assert ok.status_code == 200
    failed = client.post("/api/settings/test-connection", json={"connection_string": "nope://x"})
    assert failed.status_code == 500
    assert failed.get_json()["error"].startswith("Failed to connect to database")
