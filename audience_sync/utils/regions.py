"""
Region to state/province lookup used by the customer region filter
"""
from typing import Dict, List, Optional

REGION_STATES: Dict[str, List[str]] = {
    "North": [
        "Delhi",
        "Haryana",
        "Punjab",
        "Himachal Pradesh",
        "Jammu & Kashmir",
        "Ladakh",
        "Uttarakhand",
    ],
    "South": [
        "Karnataka",
        "Kerala",
        "Tamil Nadu",
        "Andhra Pradesh",
        "Telangana",
    ],
    "East": ["Bihar", "Jharkhand", "Odisha", "West Bengal"],
    "West": ["Maharashtra", "Gujarat", "Goa", "Rajasthan"],
    "Central": ["Madhya Pradesh", "Chhattisgarh"],
    "North-East": [
        "Assam",
        "Arunachal Pradesh",
        "Manipur",
        "Meghalaya",
        "Mizoram",
        "Nagaland",
        "Tripura",
        "Sikkim",
    ],
}

REGION_OPTIONS = list(REGION_STATES.keys())


def provinces_for_region(region: Optional[str]) -> List[str]:
    """Provinces in a region; empty for an unknown or missing region"""
    if not region:
        return []
    return list(REGION_STATES.get(region, []))
