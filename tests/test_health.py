def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200

    payload = response.json()
    assert payload["status_code"] == 200
    assert payload["status"] == "success"
    assert payload["message"] == "Service is healthy"
    assert payload["data"] == {"status": "ok", "service": "SEO Signal Hub", "scansInFlight": 0}


def test_root_info(client):
    response = client.get("/")
    assert response.status_code == 200
    payload = response.json()
    assert payload["app_name"] == "SEO Signal Hub API"
    assert payload["version"] == "1.0.0"
    assert payload["docs_url"] == "/docs"
    assert payload["api_base"] == "/api/v1"


def test_unknown_route_uses_error_envelope(client):
    response = client.get("/api/v1/does-not-exist")
    assert response.status_code == 404
    assert response.headers["cache-control"] == "no-store"
    assert response.json() == {"status_code": 404, "status": "error", "message": "Not Found", "data": {}}


def test_validation_errors_are_listed(client):
    response = client.post("/api/v1/seo", json={"url": "example.com", "depth": 0})
    assert response.status_code == 422
    payload = response.json()
    assert payload["message"] == "Validation failed"
    assert payload["data"]["errors"][0]["loc"][-1] == "depth"
