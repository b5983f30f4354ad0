from icon_evolver.rendering_styles import (
    DEFAULT_STYLE,
    MATCH_SEED,
    RENDERING_STYLES,
    SEED_STYLE_PLACEHOLDER,
    all_rendering_styles,
    get_rendering_style_prompt,
    is_known_style,
)


def test_registry_ids_match_keys():
    for key, style in RENDERING_STYLES.items():
        assert style.id == key
        assert style.name
    assert [s.id for s in all_rendering_styles()][0] == MATCH_SEED


def test_static_styles_return_their_fragment():
    for key, style in RENDERING_STYLES.items():
        if key != MATCH_SEED:
            assert get_rendering_style_prompt(key) == style.prompt_fragment
            assert style.prompt_fragment


def test_unknown_style_falls_back_to_default():
    assert get_rendering_style_prompt("nope") == RENDERING_STYLES[DEFAULT_STYLE].prompt_fragment
    assert not is_known_style("nope")
    assert is_known_style("pixel_art")


def test_match_seed_is_dynamic():
    assert "Keep the original visual style: glossy 3D" in get_rendering_style_prompt(MATCH_SEED, "glossy 3D")
    assert SEED_STYLE_PLACEHOLDER in get_rendering_style_prompt(MATCH_SEED)
    assert SEED_STYLE_PLACEHOLDER in get_rendering_style_prompt(MATCH_SEED, "   ")
