# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.
"""Unit tests for RegionResolver."""

from gpu_gateway.routing.region import DEFAULT_DISTANCE, RegionResolver


class TestResolveClientRegion:
    def test_cf_country(self):
        r = RegionResolver()
        assert r.resolve_client_region({"cf-ipcountry": "DE"}) == "eu-central"
        assert r.resolve_client_region({"cf-ipcountry": "jp"}) == "ap-east"

    def test_unknown_country_defaults_us_east(self):
        assert RegionResolver().resolve_client_region({"cf-ipcountry": "ZZ"}) == "us-east"

    def test_header_precedence(self):
        r = RegionResolver()
        headers = {"cf-ipcountry": "US", "x-amzn-region": "eu-west", "x-client-region": "ap-east"}
        assert r.resolve_client_region(headers) == "us-west"
        del headers["cf-ipcountry"]
        assert r.resolve_client_region(headers) == "eu-west"
        del headers["x-amzn-region"]
        assert r.resolve_client_region(headers) == "ap-east"

    def test_no_hint(self):
        assert RegionResolver().resolve_client_region({}) is None


class TestDistances:
    def test_same_region_is_zero(self):
        assert RegionResolver.get_distance("eu-west", "eu-west") == 0

    def test_unknown_pair(self):
        assert RegionResolver.get_distance("mars-1", "us-west") == DEFAULT_DISTANCE

    def test_sort_and_closest(self):
        r = RegionResolver()
        regions = ["ap-east", "us-east", "eu-central"]
        assert r.sort_by_distance("eu-west", regions) == ["eu-central", "us-east", "ap-east"]
        assert r.find_closest_region("us-west", regions) == "us-east"
        assert r.find_closest_region("us-west", []) is None

    def test_known_regions(self):
        assert set(RegionResolver.known_regions()) == {
            "us-west", "us-east", "eu-west", "eu-central", "ap-east",
        }
