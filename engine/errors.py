"""Exceptions raised by the workshop engine."""

from typing import List, Optional, Sequence


class WorkshopError(Exception):
    """Base class for all workshop engine errors."""


class ValidationError(WorkshopError, ValueError):
    """Raised when a mutator or query receives an invalid value."""


class DuplicateItemError(ValidationError):
    """Raised when an item name collides with an existing item."""


class ItemNotFoundError(WorkshopError, LookupError):
    """Raised when an operation references an unknown item."""

    def __init__(self, item_id: str):
        super().__init__(f"Item not found: {item_id}. Create the item first.")
        self.item_id = item_id


class RecipeNotFoundError(WorkshopError, LookupError):
    """Raised when an operation references an unknown recipe."""

    def __init__(self, recipe_id: str):
        super().__init__(f"Recipe not found: {recipe_id}")
        self.recipe_id = recipe_id


class RecipeCycleError(WorkshopError):
    """Raised when recipe expansion revisits an item on the active path."""

    def __init__(self, path: Sequence[str], names: Optional[Sequence[str]] = None):
        self.path: List[str] = list(path)
        self.names: List[str] = list(names) if names is not None else list(path)
        super().__init__(f"Recipe cycle detected: {' -> '.join(self.names)}")


class PriceWindowError(ValidationError):
    """Raised for an inverted or unparsable price-history window."""


class CatalogParseError(ValidationError):
    """Raised when a catalog document is absent or blank."""


class OcrParseError(ValidationError):
    """Raised when OCR text is absent or blank."""
