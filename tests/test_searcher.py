import pytest

from cookbook.cancel import CancellationToken
from cookbook.config import RecipeConfig
from cookbook.index import RecipeIndex
from cookbook.searcher import RecipeSearcher, normalise_query

from fakes import make_recipe


@pytest.fixture
def index():
    index = RecipeIndex()
    index.add_recipe(make_recipe("Pasta Primavera", scores={"pasta": 75}))
    index.add_recipe(make_recipe("Pasta", scores={"pasta": 95}))
    index.add_recipe(make_recipe("Baked Ziti", aliases=["Pasta Bake"], scores={"pasta": 40}))
    index.add_recipe(make_recipe("Lemon Tart", scores={"lemon tart": 90}))
    return index


def test_normalise_query_collapses_whitespace():
    assert normalise_query("  Chicken   Pot  Pie ") == "chicken pot pie"
    assert normalise_query("   ") == ""
    assert normalise_query(None) == ""


def test_relevant_results_are_sorted_by_combined_score(index):
    searcher = RecipeSearcher(index, RecipeConfig())

    results = searcher.search_recipes("Pasta", minimum_score=70, required_count=3)

    titles = [recipe.title for recipe in results]
    assert titles[:2] == ["Pasta", "Pasta Primavera"]
    # below threshold recipes fill the remaining slot when a count is requested
    assert titles[2] == "Baked Ziti"


def test_minimum_score_without_count_excludes_fallback(index):
    searcher = RecipeSearcher(index, RecipeConfig())

    results = searcher.search_recipes("pasta", minimum_score=70)

    assert {recipe.title for recipe in results} == {"Pasta", "Pasta Primavera"}


def test_alias_fuzzy_match_finds_recipe(index):
    searcher = RecipeSearcher(index, RecipeConfig())

    results = searcher.search_recipes("bake")

    assert [recipe.title for recipe in results] == ["Baked Ziti"]


def test_unknown_query_returns_nothing(index):
    searcher = RecipeSearcher(index, RecipeConfig())

    assert searcher.search_recipes("beef wellington") == []


def test_cancelled_search_returns_nothing(index):
    searcher = RecipeSearcher(index, RecipeConfig())
    token = CancellationToken()
    token.request_cancel()

    assert searcher.search_recipes("pasta", cancellation=token) == []


@pytest.mark.parametrize(
    "query, minimum_score, required_count",
    [("", None, None), ("pasta", 0, None), ("pasta", 100, None), ("pasta", 50, 0)],
)
def test_invalid_parameters_raise(index, query, minimum_score, required_count):
    searcher = RecipeSearcher(index, RecipeConfig())

    with pytest.raises(ValueError):
        searcher.search_recipes(query, minimum_score, required_count)
