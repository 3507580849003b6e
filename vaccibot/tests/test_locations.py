from __future__ import annotations

import pytest

from vaccibot.locations import load_locations, parse_location


@pytest.mark.parametrize(
    "line, expected",
    [
        ("https://www.doctolib.fr/centre-de-sante/paris/centre-a\n", "centre-a"),
        ("http://doctolib.fr/centre-de-sante/lyon/centre-b?pid=practice-1234\r\n", "centre-b"),
        ("www.doctolib.fr/vaccination-covid-19/nantes/centre-c", "centre-c"),
        ("https://www.doctolib.fr/centre-de-sante/paris", None),
        ("https://www.doctolib.fr/centre-de-sante/paris/centre-a/booking", None),
        ("", None),
    ],
)
def test_parse_location(line: str, expected: str | None) -> None:
    assert parse_location(line) == expected


def test_load_locations_keeps_order_and_skips_bad_lines(tmp_path) -> None:
    path = tmp_path / "centers.txt"
    path.write_text(
        "https://www.doctolib.fr/centre-de-sante/paris/centre-a\n"
        "not a url\n"
        "https://www.doctolib.fr/centre-de-sante/lyon/centre-b?pid=1\n",
        encoding="utf-8",
    )

    assert load_locations(str(path)) == ["centre-a", "centre-b"]


def test_load_locations_without_any_center_fails(tmp_path) -> None:
    path = tmp_path / "centers.txt"
    path.write_text("nothing here\n", encoding="utf-8")

    with pytest.raises(RuntimeError, match=r"No vaccination center URL"):
        load_locations(str(path))


def test_load_locations_missing_file(tmp_path) -> None:
    with pytest.raises(RuntimeError, match=r"not found"):
        load_locations(str(tmp_path / "missing.txt"))
