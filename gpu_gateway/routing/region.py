# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Region Resolver — Client region hints and inter-region distances.

Distances are relative latency scores (0 = same region). The table is
static; unknown pairs get DEFAULT_DISTANCE.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence

REGION_DISTANCES: Dict[str, Dict[str, int]] = {
    "us-west": {"us-west": 0, "us-east": 40, "eu-west": 80, "eu-central": 90, "ap-east": 100},
    "us-east": {"us-west": 40, "us-east": 0, "eu-west": 60, "eu-central": 70, "ap-east": 120},
    "eu-west": {"us-west": 80, "us-east": 60, "eu-west": 0, "eu-central": 10, "ap-east": 90},
    "eu-central": {"us-west": 90, "us-east": 70, "eu-west": 10, "eu-central": 0, "ap-east": 80},
    "ap-east": {"us-west": 100, "us-east": 120, "eu-west": 90, "eu-central": 80, "ap-east": 0},
}

DEFAULT_DISTANCE = 999
DEFAULT_COUNTRY_REGION = "us-east"

COUNTRY_REGIONS: Dict[str, str] = {
    "US": "us-west",
    "CA": "us-west",
    "MX": "us-west",
    "BR": "us-east",
    "GB": "eu-west",
    "FR": "eu-west",
    "NL": "eu-west",
    "ES": "eu-west",
    "DE": "eu-central",
    "IT": "eu-central",
    "CN": "ap-east",
    "JP": "ap-east",
    "KR": "ap-east",
    "SG": "ap-east",
    "AU": "ap-east",
    "IN": "ap-east",
}


class RegionResolver:
    """Resolves client regions from CDN/proxy headers."""

    def resolve_client_region(self, headers: Mapping[str, str]) -> Optional[str]:
        """
        First matching hint wins:
          cf-ipcountry   -> country mapped to a region (unknown -> us-east)
          x-amzn-region  -> used as-is
          x-client-region -> used as-is

        Header names must already be lowercase.
        """
        country = headers.get("cf-ipcountry")
        if country:
            return self.country_to_region(country)

        aws_region = headers.get("x-amzn-region")
        if aws_region:
            return aws_region

        client_region = headers.get("x-client-region")
        if client_region:
            return client_region

        return None

    @staticmethod
    def country_to_region(country_code: str) -> str:
        return COUNTRY_REGIONS.get(country_code.strip().upper(), DEFAULT_COUNTRY_REGION)

    @staticmethod
    def get_distance(from_region: str, to_region: str) -> int:
        return REGION_DISTANCES.get(from_region, {}).get(to_region, DEFAULT_DISTANCE)

    def sort_by_distance(self, from_region: str, regions: Sequence[str]) -> List[str]:
        """Closest first; stable for equal distances."""
        return sorted(regions, key=lambda r: self.get_distance(from_region, r))

    def find_closest_region(self, from_region: str, candidates: Sequence[str]) -> Optional[str]:
        if not candidates:
            return None
        return self.sort_by_distance(from_region, candidates)[0]

    @staticmethod
    def known_regions() -> List[str]:
        return list(REGION_DISTANCES)
