import unittest

from cookbook.index import RecipeIndex
from cookbook.models import Recipe

from fakes import make_recipe


class RecipeIndexTests(unittest.TestCase):
    def test_adding_same_recipe_twice_is_idempotent(self) -> None:
        index = RecipeIndex()
        recipe = make_recipe("Pasta Carbonara")

        index.add_recipe(recipe)
        keys_after_first = len(index.get_all_recipes())
        index.add_recipe(recipe)

        entries = index.get_all_recipes()
        self.assertEqual(keys_after_first, len(entries))
        key, matches = entries[0]
        self.assertEqual("Pasta Carbonara", key)
        self.assertEqual([recipe.id], list(matches))

    def test_lookup_is_case_insensitive_and_covers_aliases(self) -> None:
        index = RecipeIndex()
        recipe = make_recipe("Chicken Curry", aliases=["Curry Chicken", "Murgh Curry"])
        index.add_recipe(recipe)

        matches, found = index.try_get_exact_matches("  CHICKEN curry ")
        self.assertTrue(found)
        self.assertIn(recipe.id, matches)

        matches, found = index.try_get_exact_matches("murgh curry")
        self.assertTrue(found)
        self.assertIs(matches[recipe.id], recipe)

        self.assertEqual((None, False), index.try_get_exact_matches("lasagna"))

    def test_first_registration_keeps_display_casing(self) -> None:
        index = RecipeIndex()
        index.add_recipe(make_recipe("Banana Bread", url="https://a.example/1"))
        index.add_recipe(make_recipe("banana bread", url="https://a.example/2"))

        entries = dict(index.get_all_recipes())
        self.assertEqual(["Banana Bread"], list(entries))
        self.assertEqual(2, len(entries["Banana Bread"]))

    def test_returned_maps_are_copies(self) -> None:
        index = RecipeIndex()
        recipe = make_recipe("Tomato Soup")
        index.add_recipe(recipe)

        matches, _ = index.try_get_exact_matches("tomato soup")
        matches.clear()

        self.assertTrue(index.contains_recipe(recipe.id))
        self.assertEqual(1, len(index.try_get_exact_matches("tomato soup")[0]))

    def test_empty_id_is_rejected(self) -> None:
        index = RecipeIndex()
        with self.assertRaises(ValueError):
            index.add_recipe(Recipe(id="", title="Nameless"))
        with self.assertRaises(ValueError):
            index.add_recipe(Recipe(id="abc", title=None))
        self.assertEqual(0, len(index))

    def test_untitled_recipe_is_indexed_under_aliases_or_index_title(self) -> None:
        index = RecipeIndex()
        aliased = Recipe(id="abc", title=None, aliases=["Green Curry"])
        named = Recipe(id="def", title=None, index_title="Dal", recipe_url="https://recipes.example/dal")

        with self.assertLogs("cookbook.index", level="WARNING") as logs:
            index.add_recipe(aliased)
            index.add_recipe(named)

        self.assertTrue(index.try_get_exact_matches("green curry")[1])
        self.assertTrue(index.try_get_exact_matches("dal")[1])
        self.assertIn("https://recipes.example/dal", logs.output[1])

    def test_contains_recipe(self) -> None:
        index = RecipeIndex()
        recipe = make_recipe("Fish Tacos")
        index.add_recipe(recipe)

        self.assertTrue(index.contains_recipe(recipe.id))
        self.assertFalse(index.contains_recipe("missing"))
