"""
API tests for health and location endpoints.
"""
import pytest

from geoshield.api.dependencies import get_current_user_id

API = "/api/v1"

ATHENS = (33.9519, -83.3576)


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get(f"{API}/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_detailed_health(self, client):
        response = await client.get(f"{API}/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["checks"]["api"] == "healthy"
        assert data["checks"]["database"] == "healthy"
        assert data["status"] in ("healthy", "degraded")
        assert data["geocoding_provider"] == "mock"

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["docs"] == f"{API}/docs"


class TestGeocodingEndpoints:
    """Tests for search, reverse, popular and suggestion endpoints."""

    @pytest.mark.asyncio
    async def test_search(self, client):
        response = await client.get(f"{API}/locations/search", params={"q": "Athens, GA"})

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["items"][0]["city"] == "Athens"
        assert data["items"][0]["source"] == "geocoded"

    @pytest.mark.asyncio
    async def test_search_requires_query(self, client):
        response = await client.get(f"{API}/locations/search")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_reverse(self, client):
        response = await client.get(
            f"{API}/locations/reverse", params={"lat": ATHENS[0], "lng": ATHENS[1]}
        )
        assert response.status_code == 200
        assert response.json()["city"] == "Athens"

    @pytest.mark.asyncio
    async def test_reverse_invalid_coordinates(self, client):
        response = await client.get(f"{API}/locations/reverse", params={"lat": 95, "lng": 0})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_LOCATION"

    @pytest.mark.asyncio
    async def test_reverse_not_found(self, client):
        response = await client.get(f"{API}/locations/reverse", params={"lat": 30, "lng": -40})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_popular(self, client, make_item):
        await make_item(*ATHENS, location_display="Athens, GA", city="Athens", state="GA")

        response = await client.get(f"{API}/locations/popular")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["items"][0]["display_name"] == "Athens, GA"
        assert data["items"][0]["source"] == "listings"

    @pytest.mark.asyncio
    async def test_suggestions(self, client):
        response = await client.get(f"{API}/locations/suggestions", params={"q": "Atlanta"})

        assert response.status_code == 200
        assert response.json()["items"][0]["city"] == "Atlanta"

    @pytest.mark.asyncio
    async def test_suggestions_query_too_short(self, client):
        response = await client.get(f"{API}/locations/suggestions", params={"q": "A"})
        assert response.status_code == 422


class TestNearbyEndpoint:
    """Tests for proximity search over HTTP."""

    @pytest.mark.asyncio
    async def test_returns_bands_only(self, client, make_item):
        await make_item(33.9550, -83.3600, name="Near Drill")

        response = await client.get(
            f"{API}/locations/nearby/tool",
            params={"lat": ATHENS[0], "lng": ATHENS[1], "radius_km": 5},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["target_class"] == "tool"
        assert data["count"] == 1
        item = data["items"][0]
        assert item["name"] == "Near Drill"
        assert item["distance_band"] == "very_close"
        assert item["fuzzed_distance_km"] is None
        assert "distance_km" not in item
        assert "latitude" not in item

    @pytest.mark.asyncio
    async def test_fuzzed_disclosure(self, client, make_item):
        await make_item(33.9800, -83.3576)

        response = await client.get(
            f"{API}/locations/nearby/tool",
            params={"lat": ATHENS[0], "lng": ATHENS[1], "radius_km": 10, "disclosure": "fuzzed"},
        )

        assert response.status_code == 200
        assert response.json()["items"][0]["fuzzed_distance_km"] > 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("radius", ["0", "-3", "1001", "nan"])
    async def test_invalid_radius(self, client, radius):
        response = await client.get(
            f"{API}/locations/nearby/tool",
            params={"lat": ATHENS[0], "lng": ATHENS[1], "radius_km": radius},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_RADIUS"

    @pytest.mark.asyncio
    async def test_invalid_center(self, client):
        response = await client.get(
            f"{API}/locations/nearby/tool", params={"lat": 91, "lng": 0, "radius_km": 5}
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_LOCATION"

    @pytest.mark.asyncio
    async def test_unknown_target_class(self, client):
        response = await client.get(
            f"{API}/locations/nearby/boat", params={"lat": ATHENS[0], "lng": ATHENS[1]}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_per_target_rate_limit(self, client):
        from geoshield.main import app

        app.dependency_overrides[get_current_user_id] = lambda: "user-1"
        params = {"lat": ATHENS[0], "lng": ATHENS[1], "radius_km": 5, "target_id": "tool-42"}

        for _ in range(5):
            response = await client.get(f"{API}/locations/nearby/tool", params=params)
            assert response.status_code == 200

        response = await client.get(f"{API}/locations/nearby/tool", params=params)

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "LOCATION_RATE_LIMIT_EXCEEDED"

    @pytest.mark.asyncio
    async def test_triangulation_rejected(self, client):
        from geoshield.main import app

        app.dependency_overrides[get_current_user_id] = lambda: "user-1"
        points = [(40.7680, -73.9855), (40.7480, -73.9755), (40.7480, -73.9955)]
        statuses = []
        for lat, lng in points:
            response = await client.get(
                f"{API}/locations/nearby/user",
                params={"lat": lat, "lng": lng, "radius_km": 2, "target_id": "user-7"},
            )
            statuses.append(response.status_code)

        assert statuses == [200, 200, 400]
        assert response.json()["error"]["code"] == "SEARCH_REJECTED"
        assert response.json()["error"]["details"] is None


class TestUtilityEndpoints:
    """Tests for clustering and distance endpoints."""

    @pytest.mark.asyncio
    async def test_clusters(self, client):
        body = {
            "radius_km": 20,
            "locations": [
                {"display_name": "Athens", "city": "Athens", "state": "Georgia",
                 "latitude": 33.9519, "longitude": -83.3576},
                {"display_name": "Atlanta", "city": "Atlanta", "state": "Georgia",
                 "latitude": 33.7490, "longitude": -84.3880},
                {"display_name": "East Athens", "city": "Athens", "state": "Georgia",
                 "latitude": 33.9600, "longitude": -83.3700},
            ],
        }

        response = await client.post(f"{API}/locations/clusters", json=body)

        assert response.status_code == 200
        data = response.json()
        assert data["total_locations"] == 3
        assert [c["count"] for c in data["clusters"]] == [2, 1]
        assert data["clusters"][0]["label"] == "Athens, Georgia"
        assert data["clusters"][0]["locations"][0]["source"] == "manual"

    @pytest.mark.asyncio
    async def test_clusters_rejects_bad_latitude(self, client):
        body = {"locations": [{"display_name": "Nowhere", "latitude": 120, "longitude": 0}]}

        response = await client.post(f"{API}/locations/clusters", json=body)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_distance(self, client):
        response = await client.get(
            f"{API}/locations/distance",
            params={"from_lat": 0, "from_lng": 0, "to_lat": 1, "to_lng": 0},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["distance_km"] == pytest.approx(111.195, abs=0.001)
        assert data["distance_band"] == "very_far"
        assert data["distance_text"] == "Very far (50+ km)"
