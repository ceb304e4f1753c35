import pytest

from backend.prompts import DEFAULT_STYLE, STYLE_PROMPTS, get_style_prompt, resolve_style


@pytest.mark.parametrize("style", ["anime", "cartoon"])
def test_known_styles_resolve_to_themselves(style):
    assert resolve_style(style) == style
    assert get_style_prompt(style) is STYLE_PROMPTS[style]


@pytest.mark.parametrize("style", ["", None, "watercolor", "ANIMEish"])
def test_unknown_styles_fall_back_to_anime(style):
    assert resolve_style(style) == DEFAULT_STYLE == "anime"
    assert get_style_prompt(style) is STYLE_PROMPTS["anime"]


def test_style_names_are_case_insensitive():
    assert resolve_style(" Cartoon ") == "cartoon"


def test_styles_have_distinct_prompt_pairs():
    anime, cartoon = STYLE_PROMPTS["anime"], STYLE_PROMPTS["cartoon"]
    assert anime.positive != cartoon.positive
    assert anime.negative != cartoon.negative
    assert "pixar" in cartoon.positive
    assert "ghibli" in anime.positive
