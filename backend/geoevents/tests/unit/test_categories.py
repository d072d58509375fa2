from datetime import date

from geoevents.domain.categories import DEFAULT_CATEGORIES, category_label, default_filters


def test_default_filters_cover_five_years_and_all_categories():
    filters = default_filters(today=date(2025, 10, 4))
    assert filters.start == date(2020, 10, 4)
    assert filters.end == date(2025, 10, 4)
    assert set(filters.categories) == set(DEFAULT_CATEGORIES)
    assert filters.viewport_only is False


def test_default_filters_handle_leap_day():
    filters = default_filters(today=date(2024, 2, 29))
    assert filters.start == date(2019, 2, 28)


def test_category_label_falls_back_to_id():
    assert category_label("seaLakeIce") == "Sea & Lake Ice"
    assert category_label("earthquakes") == "earthquakes"
