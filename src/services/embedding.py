from src.services.gemini_client import TASK_RETRIEVAL_DOCUMENT, TASK_RETRIEVAL_QUERY, GeminiClient
from src.services.recipe_schema import ParsedRecipe


def format_ingredients(recipe: ParsedRecipe) -> str:
    return ", ".join(
        f"{ingredient.name} ({ingredient.quantity})" if ingredient.quantity else ingredient.name
        for ingredient in recipe.ingredients
    )


def stringify_recipe(recipe: ParsedRecipe) -> str:
    lines = [
        f"Name: {recipe.name}",
        f"Instructions: {recipe.instructions}",
        f"Ingredients: {format_ingredients(recipe)}",
        f"Tags: {', '.join(recipe.tags)}",
    ]
    return "\n".join(lines)


def embedding_document(client: GeminiClient, recipe: ParsedRecipe) -> list[float]:
    return client.embed(stringify_recipe(recipe), task_type=TASK_RETRIEVAL_DOCUMENT)


def embedding_query(client: GeminiClient, query: str) -> list[float]:
    return client.embed(query.strip(), task_type=TASK_RETRIEVAL_QUERY)
