from packages.domain.categorization.category_table import CategoryTable, category_table


def test_lookup_is_case_insensitive():
    assert category_table.lookup("meals").name == "Meals"
    assert category_table.lookup("  MEALS ").line == "24b"


def test_aliases_resolve_to_canonical_category():
    assert category_table.lookup("Meals and Entertainment").name == "Meals"
    assert category_table.lookup("office supplies").line == "18"


def test_meal_and_travel_flags():
    assert category_table.lookup("Meals").is_meal
    assert category_table.lookup("Travel").is_travel
    assert not category_table.lookup("Supplies").is_meal


def test_personal_has_no_line():
    assert category_table.line_for("Personal") is None


def test_normalize_line():
    assert category_table.normalize_line("Line 24b") == "24b"
    assert category_table.normalize_line("24B") == "24b"
    assert category_table.normalize_line("Schedule C Line 9") == "9"
    assert category_table.normalize_line("Line 99") is None
    assert category_table.normalize_line("") is None


def test_resolve_table_line_wins_for_known_category():
    name, line, info = category_table.resolve("meals", "Line 27a")
    assert (name, line) == ("Meals", "24b")
    assert info.is_meal


def test_resolve_unknown_category_keeps_model_line():
    name, line, info = category_table.resolve("Coworking", "Line 20b")
    assert (name, line, info) == ("Coworking", "20b", None)


def test_resolve_unknown_category_without_line_falls_back_to_other():
    name, line, info = category_table.resolve("Coworking", None)
    assert line == "27a"
    assert info is None


def test_label_for_line():
    table = CategoryTable()
    assert table.label_for_line("24b").lower().startswith("deductible meals")
    assert table.label_for_line("99") is None
