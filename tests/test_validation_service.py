from services.validation_service import clean_text, normalize_color


def test_normalize_color():
    assert normalize_color("#ABC") == "#abc"
    assert normalize_color("red") == "#3b82f6"
    assert normalize_color(None, default="#000000") == "#000000"


def test_clean_text():
    assert clean_text("  hi ") == "hi"
    assert clean_text("   ") is None
    assert clean_text(None) is None
