import json
import threading

import pytest

from cookbook.background import BackgroundWorker
from cookbook.config import RecipeConfig
from cookbook.llm import ContentFilterError
from cookbook.models import RelevancyResult
from cookbook.repository import RecipeFileRepository, merge_recipes
from cookbook.storage import FileService
from cookbook.webscraper import generate_url_fingerprint

from fakes import FakeLlmService, make_recipe

OUTPUT = "recipes"

CLEANED = {
    "title": "Spaghetti Carbonara",
    "description": "Roman classic.",
    "servings": "4",
    "prep_time": "10 minutes",
    "cook_time": "15 minutes",
    "total_time": "25 minutes",
    "ingredients": ["200 g spaghetti", "2 eggs", "50 g pecorino"],
    "directions": ["Boil the pasta", "Toss with the egg mixture"],
    "notes": "",
}


@pytest.fixture
def files(tmp_path):
    return FileService(tmp_path)


def make_repository(files, llm):
    return RecipeFileRepository(
        llm, RecipeConfig(output_directory=OUTPUT, max_parallel_tasks=2), file_service=files
    )


def read_batch(tmp_path, name):
    with (tmp_path / OUTPUT / f"{name}.json").open(encoding="utf-8") as handle:
        return json.load(handle)


def test_merge_splices_single_relevancy_and_takes_cleaned_content():
    existing = make_recipe("carbonara!!", scores={"a": 50})
    incoming = make_recipe(
        "Carbonara", url=existing.recipe_url, scores={"b": 90}, cleaned=True, servings="2"
    )

    (merged,) = merge_recipes([existing], [incoming])

    assert merged is existing
    assert {query: result.score for query, result in merged.relevancy.items()} == {"a": 50, "b": 90}
    assert merged.cleaned is True
    assert merged.title == "Carbonara"
    assert merged.servings == "2"


def test_merge_replaces_relevancy_with_multiple_entries_and_keeps_on_none():
    existing = make_recipe("Soup", scores={"a": 50, "old": 10})
    replacing = make_recipe("Soup", scores={"a": 60, "b": 70})
    empty = make_recipe("Soup")

    merge_recipes([existing], [replacing])
    assert set(existing.relevancy) == {"a", "b"}
    assert existing.relevancy["a"].score == 60

    merge_recipes([existing], [empty])
    assert set(existing.relevancy) == {"a", "b"}


def test_merge_keeps_cleaned_content_and_appends_new_recipes():
    existing = make_recipe("Stew", cleaned=True, description="Kept")
    incoming = make_recipe("Stew", cleaned=False, description="Raw")
    other = make_recipe("Chili")

    merged = merge_recipes([existing], [incoming, other])

    assert [recipe.title for recipe in merged] == ["Stew", "Chili"]
    assert merged[0].description == "Kept"


def test_initialize_loads_batches_and_skips_bad_files(tmp_path, files):
    url = "https://recipes.example/tortilla"
    record = make_recipe("Tortilla", url=url).as_record()
    record["id"] = None
    orphan = make_recipe("Orphan").as_record()
    orphan.update(id=None, recipe_url=None)
    files.write_to_file(OUTPUT, "Tortilla", [record, orphan])
    (tmp_path / OUTPUT / "Broken.json").write_text("{not json", encoding="utf-8")

    repository = make_repository(files, FakeLlmService())
    repository.initialize()
    repository.initialize()

    assert repository.contains_recipe_url(url)
    assert repository.contains_recipe(generate_url_fingerprint(url))
    assert not repository.contains_recipe_url("https://recipes.example/orphan")


def test_search_initializes_lazily(files):
    files.write_to_file(OUTPUT, "Tortilla", [make_recipe("Tortilla", scores={"tortilla": 88}).as_record()])
    repository = make_repository(files, FakeLlmService())

    results = repository.search_recipes("tortilla", 70, 3)

    assert [recipe.title for recipe in results] == ["Tortilla"]


def test_add_update_cleans_names_and_writes_batch(tmp_path, files):
    llm = FakeLlmService(
        {
            "CleanRecipe": CLEANED,
            "NameRecipe": {"index_title": "Carbonara", "aliases": ["Spaghetti Carbonara", "Pasta Carbonara"]},
        }
    )
    repository = make_repository(files, llm)
    recipe = make_recipe("  BEST carbonara ever!!  ", scores={"carbonara": 92})

    repository.add_update_recipes([recipe])
    assert repository.wait_for_pending_work(timeout=5)

    (stored,) = read_batch(tmp_path, "Carbonara")
    assert stored["id"] == recipe.id
    assert stored["cleaned"] is True
    assert stored["title"] == "Spaghetti Carbonara"
    assert stored["ingredients"] == CLEANED["ingredients"]
    assert stored["index_title"] == "Carbonara"
    assert stored["aliases"] == ["Spaghetti Carbonara", "Pasta Carbonara"]
    assert stored["relevancy"] == {"carbonara": {"query": "carbonara", "score": 92}}
    assert repository.contains_recipe_url(recipe.recipe_url)
    assert llm.calls_to("CleanRecipe")[0][2]["retry_count"] == 0


def test_content_filter_keeps_recipe_uncleaned(tmp_path, files):
    llm = FakeLlmService(
        {
            "CleanRecipe": ContentFilterError("flagged"),
            "NameRecipe": {"index_title": "Paella", "aliases": []},
        }
    )
    repository = make_repository(files, llm)
    recipe = make_recipe("Paella")

    repository.add_update_recipes([recipe])
    assert repository.wait_for_pending_work(timeout=5)

    (stored,) = read_batch(tmp_path, "Paella")
    assert stored["cleaned"] is False
    assert stored["title"] == "Paella"


def test_naming_failure_skips_recipe(tmp_path, files):
    llm = FakeLlmService({"NameRecipe": RuntimeError("model unavailable")})
    repository = make_repository(files, llm)
    recipe = make_recipe("Gumbo", cleaned=True)

    repository.add_update_recipes([recipe])
    assert repository.wait_for_pending_work(timeout=5)

    assert files.list_files(OUTPUT) == []
    assert not repository.contains_recipe(recipe.id)


def test_update_merges_into_existing_batch(tmp_path, files):
    existing = make_recipe("carbonara (raw)", scores={"a": 50}, index_title="Carbonara")
    files.write_to_file(OUTPUT, "Carbonara", [existing.as_record()])
    incoming = make_recipe(
        "Carbonara",
        url=existing.recipe_url,
        cleaned=True,
        index_title="Carbonara",
        ingredients=["spaghetti", "guanciale"],
    )
    incoming.relevancy["b"] = RelevancyResult(query="b", score=90)
    repository = make_repository(files, FakeLlmService())

    repository.add_update_recipes([incoming])
    assert repository.wait_for_pending_work(timeout=5)

    (stored,) = read_batch(tmp_path, "Carbonara")
    assert stored["relevancy"] == {
        "a": {"query": "a", "score": 50},
        "b": {"query": "b", "score": 90},
    }
    assert stored["cleaned"] is True
    assert stored["title"] == "Carbonara"
    assert stored["ingredients"] == ["spaghetti", "guanciale"]


def test_queued_write_is_isolated_from_later_ranking(tmp_path, files):
    worker = BackgroundWorker(name="repository-test-worker")
    release = threading.Event()
    worker.queue_background_work(lambda token: release.wait(5))
    repository = RecipeFileRepository(
        FakeLlmService(),
        RecipeConfig(output_directory=OUTPUT),
        file_service=files,
        worker=worker,
    )
    recipe = make_recipe("Soup", scores={"soup": 80}, cleaned=True, index_title="Soup")

    repository.add_update_recipes([recipe])
    for number in range(50):
        recipe.relevancy[f"soup {number}"] = RelevancyResult(query=f"soup {number}", score=number)
    release.set()
    assert repository.wait_for_pending_work(timeout=5)

    (stored,) = read_batch(tmp_path, "Soup")
    assert stored["relevancy"] == {"soup": {"query": "soup", "score": 80}}
    assert len(recipe.relevancy) == 51


def test_titles_sharing_a_file_name_are_merged_into_one_batch(tmp_path, files):
    repository = make_repository(files, FakeLlmService())
    first = make_recipe("Mac and Cheese", cleaned=True, index_title="Mac & Cheese")
    second = make_recipe("Baked Mac", cleaned=True, index_title="Mac Cheese")

    repository.add_update_recipes([first, second])
    assert repository.wait_for_pending_work(timeout=5)

    stored = read_batch(tmp_path, "Mac Cheese")
    assert {record["id"] for record in stored} == {first.id, second.id}
