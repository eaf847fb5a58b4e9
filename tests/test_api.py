"""
Unit tests for the Spatial Engine HTTP API and its error handling.
Covers the conversion scenarios plus clustering, optimization and tile preload.
"""

import math

import pytest
from fastapi.testclient import TestClient

from api.server import app

client = TestClient(app)

BEIJING_BD09 = {"latitude": 39.915, "longitude": 116.404}


# -----------------------------------------------------------------------------
# Scenario 1: Happy Path (BD09 → GCJ02 inside China)
# -----------------------------------------------------------------------------
def test_api_convert_success():
    response = client.post("/api/v1/convert", json={**BEIJING_BD09, "source": "bd09ll", "target": "gcj02"})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    out = data["data"]["output"]
    assert out["system"] == "gcj02"
    assert -0.0075 < out["latitude"] - 39.915 < -0.005
    assert -0.0075 < out["longitude"] - 116.404 < -0.0055
    assert "processing_time_ms" in data["meta"]


# -----------------------------------------------------------------------------
# Scenario 2: Outside China → WGS84/GCJ02 is a no-op
# -----------------------------------------------------------------------------
def test_api_convert_outside_china_unchanged():
    response = client.post("/api/v1/convert", json={"latitude": 10, "longitude": 10,
                                                    "source": "wgs84", "target": "gcj02"})
    assert response.status_code == 200
    out = response.json()["data"]["output"]
    assert (out["latitude"], out["longitude"]) == (10.0, 10.0)


# -----------------------------------------------------------------------------
# Scenario 3: Error Handle - Invalid Data Types (400 Bad Request)
# -----------------------------------------------------------------------------
def test_api_convert_invalid_types():
    response = client.post("/api/v1/convert", json={"latitude": "invalid_string", "longitude": None})
    assert response.status_code == 400
    assert response.json()["detail"].startswith("INVALID_PARAMETER")


# -----------------------------------------------------------------------------
# Scenario 4: Error Handle - Out of Range (422)
# -----------------------------------------------------------------------------
def test_api_convert_out_of_range():
    response = client.post("/api/v1/convert", json={"latitude": 200, "longitude": 200})
    assert response.status_code == 422
    assert response.json()["detail"].startswith("OUT_OF_RANGE")


# -----------------------------------------------------------------------------
# Scenario 5: Error Handle - Unsupported conversion pair (400)
# -----------------------------------------------------------------------------
def test_api_convert_unsupported_pair():
    response = client.post("/api/v1/convert", json={**BEIJING_BD09, "source": "bd09mc", "target": "wgs84"})
    assert response.status_code == 400
    assert response.json()["detail"].startswith("UNSUPPORTED_CONVERSION")


def test_api_convert_unknown_system_rejected_by_schema():
    response = client.post("/api/v1/convert", json={**BEIJING_BD09, "source": "mercator"})
    assert response.status_code == 422


def test_api_convert_batch_reports_partial_failures():
    response = client.post("/api/v1/convert/batch", json={
        "coordinates": [BEIJING_BD09, {"latitude": 95, "longitude": 0}, {"latitude": "x", "longitude": 1}],
        "source": "bd09ll",
        "target": "wgs84",
    })

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["summary"] == {"total": 3, "failed": 2}
    results = data["results"]
    assert results[0]["success"] is True
    assert results[1]["error"].startswith("OUT_OF_RANGE")
    assert results[1]["coordinate"] == {"latitude": 95.0, "longitude": 0.0}
    assert results[2]["coordinate"] is None


def test_api_distance():
    response = client.post("/api/v1/distance", json={
        "a": {"latitude": 37.49794, "longitude": 127.02764},
        "b": {"latitude": 37.49894, "longitude": 127.02764},
    })
    assert response.status_code == 200
    data = response.json()["data"]
    for key in ("haversine_m", "krasovsky_m", "geodesic_m"):
        assert 110 < data[key] < 112


def test_api_distance_antipodal_pair():
    response = client.post("/api/v1/distance", json={
        "a": {"latitude": 0.08, "longitude": 0.0},
        "b": {"latitude": -0.08, "longitude": 180.0},
    })
    assert response.status_code == 200
    assert response.json()["data"]["haversine_m"] == pytest.approx(math.pi * 6371000, rel=1e-9)


def test_api_distance_invalid_point():
    response = client.post("/api/v1/distance", json={
        "a": {"latitude": 37.4, "longitude": 127.0},
        "b": {"latitude": -91, "longitude": 127.0},
    })
    assert response.status_code == 422


def test_api_cluster():
    response = client.post("/api/v1/cluster", json={
        "zoom": 12,
        "radius_px": 50,
        "markers": [
            {"latitude": 39.915, "longitude": 116.404, "payload": "a"},
            {"latitude": 39.916, "longitude": 116.405, "payload": "b"},
            {"latitude": 39.917, "longitude": 116.406, "payload": "c"},
            {"latitude": 39.995, "longitude": 116.404, "payload": "far"},
            {"payload": "no position"},
        ],
    })

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 2
    first, second = data["clusters"]
    assert first["is_cluster"] is True
    assert first["payloads"] == ["a", "b", "c"]
    assert second["count"] == 1


def test_api_optimize():
    markers = [{"latitude": 39.9 + i * 0.001, "longitude": 116.4, "payload": i} for i in range(30)]
    markers.append({"latitude": 10, "longitude": 10, "payload": "outside"})

    response = client.post("/api/v1/optimize", json={
        "markers": markers,
        "bounds": {"north": 40.0, "south": 39.8, "east": 116.5, "west": 116.3},
        "zoom": 18,
    })

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["summary"]["original_count"] == 31
    assert data["summary"]["optimized_count"] == 30
    assert data["clustered"] is False
    assert data["window"]["start_index"] == 0
    assert data["window"]["end_index"] == 29
    assert "outside" not in [item["payload"] for item in data["visible"]]


def test_api_preload_tiles():
    response = client.post("/api/v1/tiles/preload", json={
        "center": BEIJING_BD09, "zoom": 10, "width": 512, "height": 512,
    })
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 16
    assert all(t["z"] == 10 for t in data["tiles"])


def test_api_stats_and_health():
    response = client.get("/api/v1/stats")
    assert response.status_code == 200
    data = response.json()["data"]
    assert "window_size" in data
    assert "recommendations" in data
    assert data["performance_report"]["fps_trend"] == "stable"

    assert client.get("/health").json()["status"] == "ok"


def test_lifespan_creates_and_destroys_engine():
    with TestClient(app) as scoped:
        engine = app.state.engine
        assert engine is not None
        assert scoped.get("/api/v1/stats").status_code == 200
    assert app.state.engine is None


@pytest.mark.parametrize("zoom", [-1, 30])
def test_api_cluster_rejects_bad_zoom(zoom):
    response = client.post("/api/v1/cluster", json={"zoom": zoom, "markers": []})
    assert response.status_code == 422
