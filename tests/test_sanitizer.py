from bs4 import BeautifulSoup

from acquisition.scraper.sanitizer import (
    DEFAULT_PROFILE,
    DIRECT_PARSE_PROFILE,
    clean_markup,
    collapse_markup,
    prune_empty_tags,
    script_arguments,
)

RAW = (
    "<div>\n  <p>Price   <b>12</b></p>\n"
    "  <div> <span> </span></div><!-- tracking -->"
    "<script>track()</script><img src='x.png'><button>Buy</button>"
    "<link rel='stylesheet' href='a.css'>\n</div>"
)


def test_clean_markup_removes_noise_and_empty_elements():
    assert clean_markup(RAW) == "<div> <p>Price <b>12</b></p> </div>"


def test_inline_word_boundaries_survive():
    cleaned = clean_markup("<p><span>Robe</span>\n  <span>noire</span></p>")

    assert cleaned == "<p><span>Robe</span> <span>noire</span></p>"
    assert BeautifulSoup(cleaned, "html.parser").get_text() == "Robe noire"


def test_clean_markup_is_idempotent():
    once = clean_markup(RAW)
    assert clean_markup(once) == once


def test_prune_reaches_fixed_point():
    soup = BeautifulSoup("<div><section><ul><li></li></ul></section><p>kept</p></div>", "html.parser")
    passes = prune_empty_tags(soup)

    assert passes == 3
    assert str(soup) == "<div><p>kept</p></div>"
    assert prune_empty_tags(soup) == 0


def test_prune_respects_pass_cap():
    soup = BeautifulSoup("<div><div><div></div></div></div>", "html.parser")
    assert prune_empty_tags(soup, max_passes=1) == 1
    assert str(soup) == "<div><div></div></div>"


def test_clean_markup_can_keep_empty_elements():
    html = '<meta property="og:title" content="Robe"/><p>text</p>'
    assert 'property="og:title"' in clean_markup(html, prune_empty=False)


def test_collapse_markup():
    assert collapse_markup("<p>a\n\n   b</p><!-- x\n y -->") == "<p>a b</p>"


def test_profiles():
    assert "class" in DEFAULT_PROFILE.remove_attributes
    assert "class" not in DIRECT_PARSE_PROFILE.remove_attributes
    assert DIRECT_PARSE_PROFILE.whole_document is True

    selectors, attributes, strip_data, whole = script_arguments(DEFAULT_PROFILE)
    assert "script" in selectors and ".search-bar" in selectors
    assert attributes == ["class", "style", "tabindex"]
    assert strip_data is True
    assert whole is False
