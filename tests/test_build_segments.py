"""Tests for build_segments.py"""

import json
from unittest.mock import MagicMock

import pytest

from build_segments import (
    MissingRoad, build, fetch_road, get_statistics, load_road_lines, main,
)
from overpass_client import NetworkError
from road_cache import RoadCache
from road_line import InvalidGeometry, RoadLine

SAMPLE_CSV = """\
ESTADO,RODOVIA,KM INICIAL,KM FINAL
DF,BR-101,"10,0","20,0"
GO,BR-101,"50","10"
SP,116,"0","5"
MG,116,bad,5
"""


def _way(way_id, *points):
    return {"type": "way", "id": way_id,
            "geometry": [{"lat": lat, "lon": lon} for lon, lat in points]}


RELATION_PAYLOAD = {"elements": [
    {"type": "relation", "id": 500, "members": [
        {"type": "way", "ref": 1, "role": ""},
        {"type": "way", "ref": 2, "role": ""},
    ]},
    _way(1, (0.0, 0.0), (0.1, 0.0)),
    _way(2, (0.2, 0.0), (0.1, 0.0)),
]}

WAYS_PAYLOAD = {"elements": [
    _way(2, (0.2, 0.0), (0.1, 0.0)),
    _way(3, (0.2, 0.0), (0.3, 0.0)),
    _way(4, (5.0, 5.0), (5.1, 5.0)),  # isolated spur far away
]}


def _client(*payloads):
    client = MagicMock()
    client.fetch.side_effect = list(payloads)
    return client


def _seed_workspace(tmp_path):
    csv_path = tmp_path / "trechos.csv"
    csv_path.write_text(SAMPLE_CSV, encoding="utf-8")
    cache = RoadCache(tmp_path / "roads")
    # ~100 km and ~33 km roads along the equator
    cache.write("101", RoadLine("101", [(i * 0.1, 0.0) for i in range(10)]))
    cache.write("116", RoadLine("116", [(0.0, 0.0), (0.1, 0.0), (0.3, 0.0)]))
    return csv_path


class TestFetchRoad:
    def test_graph_assembly_merges_both_sources(self):
        client = _client(RELATION_PAYLOAD, WAYS_PAYLOAD)
        line = fetch_road(client, "101")
        assert line.road_id == "101"
        assert line.coords in (
            [(0.0, 0.0), (0.1, 0.0), (0.2, 0.0), (0.3, 0.0)],
            [(0.3, 0.0), (0.2, 0.0), (0.1, 0.0), (0.0, 0.0)],
        )
        queries = [c.args[0] for c in client.fetch.call_args_list]
        assert 'rel["route"="road"]["ref"="BR-101"]' in queries[0]
        assert 'way["highway"]["ref"="BR-101"]' in queries[1]

    def test_relation_assembly_follows_member_order(self):
        client = _client(RELATION_PAYLOAD, WAYS_PAYLOAD)
        line = fetch_road(client, "101", assembly="relation")
        assert line.coords == [(0.0, 0.0), (0.1, 0.0), (0.2, 0.0)]

    def test_relation_assembly_falls_back_to_graph(self):
        client = _client({"elements": []}, WAYS_PAYLOAD)
        line = fetch_road(client, "101", assembly="relation")
        assert len(line.coords) == 3

    def test_no_geometry_is_invalid(self):
        client = _client({"elements": []}, {"elements": []})
        with pytest.raises(InvalidGeometry):
            fetch_road(client, "101")

    def test_network_error_propagates(self):
        client = MagicMock()
        client.fetch.side_effect = NetworkError("down")
        with pytest.raises(NetworkError):
            fetch_road(client, "101")


class TestLoadRoadLines:
    def setup_method(self):
        self.throttle = MagicMock()

    def test_cache_hit_skips_download(self, tmp_path):
        cache = RoadCache(tmp_path)
        cache.write("101", RoadLine("101", [(0.0, 0.0), (0.1, 0.0)]))
        client = MagicMock()
        lines = load_road_lines(["101"], cache, client=client, throttle=self.throttle)
        assert lines["101"].coords == [(0.0, 0.0), (0.1, 0.0)]
        client.fetch.assert_not_called()
        self.throttle.wait.assert_not_called()

    def test_miss_downloads_and_caches(self, tmp_path):
        cache = RoadCache(tmp_path)
        client = _client(RELATION_PAYLOAD, WAYS_PAYLOAD)
        lines = load_road_lines(["101"], cache, client=client, throttle=self.throttle)
        assert len(lines["101"].coords) == 4
        assert cache.read("101") is not None
        self.throttle.wait.assert_called_once()
        self.throttle.mark.assert_called_once()

    def test_stale_cache_is_refetched(self, tmp_path):
        RoadCache(tmp_path, version=1).write("101", RoadLine("101", [(0.0, 0.0), (0.1, 0.0)]))
        cache = RoadCache(tmp_path, version=2)
        client = _client(RELATION_PAYLOAD, WAYS_PAYLOAD)
        lines = load_road_lines(["101"], cache, client=client, throttle=self.throttle)
        assert len(lines["101"].coords) == 4
        assert client.fetch.call_count == 2

    def test_offline_missing_road_fails(self, tmp_path):
        with pytest.raises(MissingRoad):
            load_road_lines(["101"], RoadCache(tmp_path), client=MagicMock(),
                            throttle=self.throttle, offline=True)


class TestBuild:
    def setup_method(self):
        self.throttle = MagicMock()

    def test_offline_build(self, tmp_path):
        csv_path = _seed_workspace(tmp_path)
        out = tmp_path / "public" / "data" / "trechos.geojson"
        collection = build(csv_path, tmp_path / "roads", out, offline=True,
                           client=MagicMock(), throttle=self.throttle)

        data = json.loads(out.read_text())
        assert data == json.loads(json.dumps(collection))
        assert len(data["features"]) == 3
        props = [f["properties"] for f in data["features"]]
        assert props[1]["kmStart"] == 10 and props[1]["kmEnd"] == 50
        assert props[2]["road"] == "BR-116"
        assert data["features"][2]["geometry"]["type"] == "LineString"

    def test_fetch_failure_writes_nothing(self, tmp_path):
        csv_path = tmp_path / "trechos.csv"
        csv_path.write_text(SAMPLE_CSV, encoding="utf-8")
        out = tmp_path / "out.geojson"
        client = MagicMock()
        client.fetch.side_effect = NetworkError("down")
        with pytest.raises(NetworkError):
            build(csv_path, tmp_path / "roads", out, client=client, throttle=self.throttle)
        assert not out.exists()

    def test_statistics(self, tmp_path):
        csv_path = _seed_workspace(tmp_path)
        collection = build(csv_path, tmp_path / "roads", tmp_path / "out.geojson",
                           offline=True, client=MagicMock(), throttle=self.throttle)
        stats = get_statistics(collection)
        assert stats["total_segments"] == 3
        assert stats["total_roads"] == 2
        assert stats["km_by_uf"] == {"DF": 10.0, "GO": 40.0, "SP": 5.0}
        assert stats["total_length_km"] == 55.0

    def test_statistics_empty(self):
        assert get_statistics({"type": "FeatureCollection", "features": []}) == {}


class TestMain:
    def test_offline_success(self, tmp_path):
        csv_path = _seed_workspace(tmp_path)
        out = tmp_path / "out.geojson"
        ok = main(["--csv", str(csv_path), "--cache-dir", str(tmp_path / "roads"),
                   "--out", str(out), "--offline", "--stats", "--log-file", ""])
        assert ok is True
        assert out.exists()

    def test_offline_missing_cache_fails(self, tmp_path):
        csv_path = tmp_path / "trechos.csv"
        csv_path.write_text(SAMPLE_CSV, encoding="utf-8")
        ok = main(["--csv", str(csv_path), "--cache-dir", str(tmp_path / "empty"),
                   "--out", str(tmp_path / "out.geojson"), "--offline", "--log-file", ""])
        assert ok is False

    def test_missing_csv_fails(self, tmp_path):
        ok = main(["--csv", str(tmp_path / "nope.csv"), "--offline", "--log-file", ""])
        assert ok is False
