# leadengine/jobs/markets.py
from __future__ import annotations

from ..domain.types import GeoUnit

# Default ingestion footprint. Order matters: the coordinator shards this list contiguously.
FLORIDA_MARKETS: list[tuple[str, str, list[str]]] = [
    ("Tampa", "FL", ["33602", "33603", "33604", "33605", "33606", "33607", "33609", "33610", "33611", "33612",
                     "33613", "33614", "33615", "33616", "33617", "33618", "33619", "33620", "33621", "33622"]),
    ("Orlando", "FL", ["32801", "32802", "32803", "32804", "32805", "32806", "32807", "32808", "32809", "32810",
                       "32811", "32812", "32814", "32815", "32816", "32817", "32818", "32819", "32820", "32821"]),
    ("Miami", "FL", ["33101", "33102", "33103", "33104", "33105", "33106", "33107", "33109", "33110", "33111",
                     "33112", "33113", "33114", "33115", "33116", "33117", "33118", "33119", "33120", "33121"]),
    ("Jacksonville", "FL", ["32099", "32202", "32203", "32204", "32205", "32206", "32207", "32208", "32209", "32210",
                            "32211", "32212", "32213", "32214", "32215", "32216", "32217", "32218", "32219", "32220"]),
    ("Fort Lauderdale", "FL", ["33301", "33302", "33303", "33304", "33305", "33306", "33307", "33308", "33309",
                               "33310", "33311", "33312", "33313", "33314", "33315", "33316", "33317", "33318",
                               "33319", "33320"]),
    ("Sarasota", "FL", ["34230", "34231", "34232", "34233", "34234", "34235", "34236", "34237", "34238", "34239",
                        "34240", "34241", "34242", "34243", "34244", "34245", "34246", "34247", "34248", "34249"]),
    ("Fort Myers", "FL", ["33901", "33902", "33903", "33904", "33905", "33906", "33907", "33908", "33909", "33910",
                          "33911", "33912", "33913", "33914", "33915", "33916", "33917", "33918", "33919", "33920"]),
    ("Naples", "FL", ["34102", "34103", "34104", "34105", "34106", "34107", "34108", "34109", "34110", "34111",
                      "34112", "34113", "34114", "34115", "34116", "34117", "34118", "34119", "34120", "34121"]),
]


def default_geo_units(cities: list[str] | None = None) -> list[GeoUnit]:
    """ZIP-level units for the default markets, optionally limited to some cities (case-insensitive)."""
    wanted = {c.strip().lower() for c in cities} if cities else None
    out: list[GeoUnit] = []
    for city, state, zips in FLORIDA_MARKETS:
        if wanted is not None and city.lower() not in wanted:
            continue
        out.extend(GeoUnit(zipcode=z, city=city, state=state) for z in zips)
    return out


def parse_geo_units(zips: list[str] | None, city: str | None, state: str | None) -> list[GeoUnit]:
    """Explicit units from the command line: one per ZIP, or a single city+state unit."""
    if zips:
        return [GeoUnit(zipcode=z, city=city, state=state) for z in zips]
    if city and state:
        return [GeoUnit(city=city, state=state)]
    return []
