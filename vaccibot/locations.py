from __future__ import annotations

import os

_PREFIXES = ("https://", "http://", "www.doctolib.fr/", "doctolib.fr/")


def parse_location(line: str) -> str | None:
    """Extract the center slug from a booking page URL.

    ``https://www.doctolib.fr/centre-de-sante/paris/centre-a?pid=1`` -> ``centre-a``.
    Lines that don't look like ``<specialty>/<city>/<slug>`` give None.
    """
    value = line.strip()
    for prefix in _PREFIXES:
        value = value.replace(prefix, "")
    value = value.split("?", 1)[0]

    parts = value.split("/")
    if len(parts) != 3 or not parts[2]:
        return None
    return parts[2]


def load_locations(path: str) -> list[str]:
    if not os.path.exists(path):
        raise RuntimeError(f"Vaccination centers file not found: {path}")

    locations: list[str] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            location = parse_location(line)
            if location:
                locations.append(location)

    if not locations:
        raise RuntimeError(f"No vaccination center URL found in file {path}")
    return locations
