from icon_evolver.models import TrendCorpus
from icon_evolver.trends import all_trend_ids, filter_trends, find_ambiguous_ids


def test_single_anime_selection_yields_one_block(corpus):
    result = filter_trends(corpus, {"anime-Demon Slayer"})
    assert result.selected_names == ["Demon Slayer"]
    assert result.context.count("## ") == 1
    assert result.context.startswith("## Anime & manga trends")
    assert "Demon Slayer" in result.context
    assert "Frieren" not in result.context
    assert "Dune" not in result.context


def test_matching_is_case_insensitive(corpus):
    result = filter_trends(corpus, ["ANIME-demon slayer", "aesthetic-y2k"])
    assert result.selected_names == ["Demon Slayer", "Y2K"]
    assert "Examples: chrome text" in result.context


def test_categories_follow_canonical_order(corpus):
    result = filter_trends(corpus, ["aesthetic-Y2K", "anime-Frieren", "game-Zelda", "movie-Inside Out 2"])
    headings = [line for line in result.context.splitlines() if line.startswith("## ")]
    assert headings == ["## Movie & TV trends", "## Game trends", "## Anime & manga trends", "## Aesthetic trends"]
    assert result.selected_names == ["Inside Out 2", "Zelda", "Frieren", "Y2K"]


def test_empty_selection_is_not_an_error(corpus):
    result = filter_trends(corpus, set())
    assert result.context == ""
    assert result.selected_names == []
    assert not result.has_selection


def test_unknown_and_malformed_ids_are_ignored(corpus):
    result = filter_trends(corpus, ["anime-Naruto", "Demon Slayer", "", None, "movie-"])
    assert not result.has_selection


def test_output_never_contains_unselected_items(corpus):
    selection = {"movie-Dune: Part Two", "anime-Frieren"}
    result = filter_trends(corpus, selection)
    for tid in all_trend_ids(corpus):
        title = tid.split("-", 1)[1]
        if tid not in selection:
            assert f"- {title}:" not in result.context


def test_all_trend_ids_use_singular_prefixes(corpus):
    assert all_trend_ids(corpus) == [
        "movie-Dune: Part Two",
        "movie-Inside Out 2",
        "game-Zelda",
        "anime-Demon Slayer",
        "anime-Frieren",
        "aesthetic-Y2K",
    ]


def test_find_ambiguous_ids():
    corpus = TrendCorpus.model_validate({
        "movies": [{"title": "Arcane"}, {"title": "arcane"}],
        "anime": [{"title": "Arcane"}],
    })
    assert find_ambiguous_ids(corpus) == ["movie-arcane"]
    result = filter_trends(corpus, ["movie-Arcane"])
    assert result.selected_names == ["Arcane", "arcane"]
