def test_events_endpoint_returns_merged_pages(api_client, eonet_server):
    response = api_client.get(
        "/api/events",
        params={"start": "2024-01-01", "end": "2024-12-31", "categories": "wildfires,floods"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 3
    assert [e["id"] for e in data["events"]] == ["EONET_0", "EONET_1", "EONET_2"]
    assert data["cacheKey"] == "events|2024-01-01|2024-12-31|floods,wildfires|all|-|none"
    assert data["bbox"] is None
    first = data["events"][0]
    assert {"id", "title", "categories", "geometry", "sources"}.issubset(first.keys())
    assert eonet_server.calls == 2


def test_events_endpoint_serves_repeat_requests_from_cache(api_client, eonet_server):
    params = {"start": "2024-01-01", "end": "2024-12-31", "categories": "wildfires"}
    assert api_client.get("/api/events", params=params).status_code == 200
    assert api_client.get("/api/events", params=params).status_code == 200
    assert eonet_server.calls == 2

    params["refresh"] = "true"
    assert api_client.get("/api/events", params=params).status_code == 200
    assert eonet_server.calls == 4


def test_events_endpoint_viewport_restriction(api_client, eonet_server):
    response = api_client.get(
        "/api/events",
        params={
            "start": "2024-01-01",
            "end": "2024-12-31",
            "categories": "wildfires",
            "viewport_only": "true",
            "lat": 37.0,
            "lon": -120.0,
            "lat_delta": 10.0,
            "lon_delta": 11.0,
        },
    )
    assert response.status_code == 200
    assert response.json()["bbox"] == [-125.5, 32.0, -114.5, 42.0]
    assert eonet_server.requests[0].url.params["bbox"] == "-125.5,32,-114.5,42"


def test_events_endpoint_rejects_inverted_range(api_client, eonet_server):
    response = api_client.get("/api/events", params={"start": "2024-06-01", "end": "2024-01-01"})
    assert response.status_code == 422
    assert eonet_server.calls == 0


def test_events_endpoint_requires_full_viewport(api_client):
    response = api_client.get(
        "/api/events",
        params={"start": "2024-01-01", "end": "2024-12-31", "viewport_only": "true", "lat": 10},
    )
    assert response.status_code == 422


def test_events_endpoint_maps_upstream_failure(api_client, eonet_server):
    eonet_server.status_code = 503
    response = api_client.get("/api/events", params={"start": "2024-01-01", "end": "2024-12-31"})
    assert response.status_code == 502
    assert response.json()["detail"]["upstreamStatus"] == 503


def test_categories_endpoint_lists_catalog(api_client):
    response = api_client.get("/api/categories")
    assert response.status_code == 200
    data = response.json()
    assert len(data) == 9
    assert {"id": "wildfires", "label": "Wildfires"} in data
