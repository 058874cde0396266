from fastapi.testclient import TestClient

from conftest import make_transport, nws_routes
from trailsafe.api import create_app


def client_for(routes):
    return TestClient(create_app(transport=make_transport(routes)))


def test_health():
    response = client_for({}).get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_missing_coordinates_is_bad_request():
    response = client_for({}).get("/safety", params={"lon": "-111.7"})
    assert response.status_code == 400
    assert response.json() == {"error": "Latitude and longitude are required"}


def test_bad_date_is_bad_request():
    response = client_for({}).get("/safety", params={"lat": "40.6", "lon": "-111.7", "date": "2025/01/15"})
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid date format. Use YYYY-MM-DD."


def test_bad_start_is_bad_request():
    params = {"lat": "40.6", "lon": "-111.7", "date": "2025-01-15", "start": "7pm"}
    response = client_for({}).get("/safety", params=params)
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid start time. Use HH:MM."


def test_date_outside_forecast_is_bad_request_with_range():
    params = {"lat": "40.6", "lon": "-111.7", "date": "2030-06-01"}
    response = client_for(nws_routes()).get("/safety", params=params)
    assert response.status_code == 400
    body = response.json()
    assert body["available_range"] == {"start": "2025-01-15", "end": "2025-01-16"}
    assert "2030-06-01" in body["error"]


def test_all_upstreams_failing_still_returns_a_report():
    params = {"lat": "40.6", "lon": "-111.7", "date": "2025-01-15", "start": "06:00", "travel_window_hours": "8"}
    response = client_for({}).get("/safety", params=params)

    assert response.status_code == 200
    body = response.json()
    assert body["partial_data"] is True
    assert body["api_warning"]
    assert body["forecast"]["travel_window_hours"] == 8
    assert 0 <= body["safety"]["score"] <= 100
    assert 20 <= body["safety"]["confidence"] <= 100
