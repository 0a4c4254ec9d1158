"""RecipeBook API: recipe metadata in SQL, recipe bodies and images in a blob store."""

__version__ = "0.1.0"
