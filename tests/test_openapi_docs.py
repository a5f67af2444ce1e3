from __future__ import annotations


def test_docs_swagger_ui(client):
    response = client.get("/docs/")
    assert response.status_code == 200
    assert b"Swagger" in response.data


def test_openapi_spec_lists_endpoints(client):
    response = client.get("/docs/openapi.json")
    assert response.status_code == 200
    data = response.get_json()
    assert data["info"]["title"] == "LSP Price Aggregator API"
    paths = data["paths"].keys()
    assert "/health" in paths
    assert "/health/store" in paths
    assert "/prices" in paths
    assert "/prices/live" in paths
    assert "/prices/refresh" in paths
    assert "/prices/refresh/{provider_id}" in paths
    assert "/prices/history" in paths
    assert "/prices/channel-sizes" in paths
    assert "/prices/rate-limits" in paths
