from __future__ import annotations

from unittest.mock import MagicMock

import requests

from config import Configuration
from services.places import GooglePlacesClient


def _response(payload, ok: bool = True) -> MagicMock:
    resp = MagicMock()
    resp.ok = ok
    resp.status_code = 200 if ok else 503
    resp.text = ""
    resp.json.return_value = payload
    return resp


SEARCH = {"results": [{"place_id": "ChIJ123", "name": "Dishoom", "formatted_address": "7 Boundary St"}, {"name": "no id"}]}
DETAILS = {
    "result": {
        "place_id": "ChIJ123",
        "name": "Dishoom",
        "rating": 4.6,
        "user_ratings_total": 1200,
        "geometry": {"location": {"lat": 51.5246, "lng": -0.0786}},
        "reviews": [
            {"author_name": "Ann", "rating": 5, "text": "Dal!", "time": 1700000000},
            {"author_name": "Empty", "rating": 1, "text": "   ", "time": 1700000001},
        ],
    }
}


def test_text_search_skips_results_without_place_id() -> None:
    session = MagicMock()
    session.get.return_value = _response(SEARCH)
    client = GooglePlacesClient(Configuration(google_maps_api_key="k"), session=session)
    candidates = client.text_search("Dishoom London restaurant")
    assert [c.place_id for c in candidates] == ["ChIJ123"]
    params = session.get.call_args.kwargs["params"]
    assert params == {"query": "Dishoom London restaurant", "key": "k"}


def test_find_place_returns_details() -> None:
    session = MagicMock()
    session.get.side_effect = [_response(SEARCH), _response(DETAILS)]
    client = GooglePlacesClient(Configuration(google_maps_api_key="k"), session=session)
    details = client.find_place("Dishoom")
    assert details is not None
    assert details.rating == 4.6
    assert details.rating_count == 1200
    assert [r.author for r in details.reviews] == ["Ann"]
    assert details.point.lat == 51.5246


def test_no_candidates_is_none() -> None:
    session = MagicMock()
    session.get.return_value = _response({"results": []})
    client = GooglePlacesClient(Configuration(google_maps_api_key="k"), session=session)
    assert client.find_place("nothing") is None
    assert session.get.call_count == 1


def test_transport_errors_are_swallowed_into_empty() -> None:
    session = MagicMock()
    session.get.side_effect = requests.ConnectionError("down")
    client = GooglePlacesClient(Configuration(google_maps_api_key="k"), session=session)
    assert client.text_search("x") == []
    assert client.place_details("p") is None


def test_http_error_on_details() -> None:
    session = MagicMock()
    session.get.side_effect = [_response(SEARCH), _response({}, ok=False)]
    client = GooglePlacesClient(Configuration(google_maps_api_key="k"), session=session)
    assert client.find_place("Dishoom") is None
