"""
Category registry: the ordered set of named, colored categories of a project
plus the live count of shapes assigned to each category name.
"""
import random
import threading
from typing import Dict, List, Optional, Tuple

Color = Tuple[int, int, int, int]

DEFAULT_ALPHA = 255


class DuplicateNameError(ValueError):
    """Raised when a category name is already taken."""


class UnknownCategoryError(KeyError):
    """Raised when a category name is not registered."""


class Category:
    """A named, colored label. Shapes hold a reference to the Category object,
    so renaming it is seen by every shape at once."""

    __slots__ = ("name", "color")

    def __init__(self, name: str, color: Color = None):
        self.name = name
        self.color = color if color is not None else random_color()

    def __repr__(self):
        return f"Category({self.name!r}, {color_to_hex(self.color)})"


def random_color() -> Color:
    """Random opaque color; uniqueness is not guaranteed."""
    return (random.randint(0, 255), random.randint(0, 255), random.randint(0, 255), DEFAULT_ALPHA)


def parse_color(text: str) -> Color:
    """Parses web hex colors: #rgb, #rrggbb or #rrggbbaa."""
    if not isinstance(text, str) or not text.startswith("#"):
        raise ValueError(f"Invalid color: {text!r}")
    digits = text[1:]
    if len(digits) == 3:
        digits = "".join(c * 2 for c in digits)
    if len(digits) == 6:
        digits += "ff"
    if len(digits) != 8:
        raise ValueError(f"Invalid color: {text!r}")
    try:
        return tuple(int(digits[i:i + 2], 16) for i in range(0, 8, 2))
    except ValueError:
        raise ValueError(f"Invalid color: {text!r}") from None


def color_to_hex(color: Color) -> str:
    r, g, b, a = color
    return f"#{r:02x}{g:02x}{b:02x}{a:02x}"


class CategoryRegistry:
    """Ordered categories keyed by exact (case-sensitive) name, plus the
    per-name shape counts.

    Mutating methods take an internal lock so import workers can register
    categories and bump counts concurrently.
    """

    def __init__(self):
        #name : Category, in insertion order
        self._categories: Dict[str, Category] = {}
        #name : number of shapes (any nesting depth, all images)
        self._counts: Dict[str, int] = {}
        self._lock = threading.RLock()

    def __contains__(self, name):
        return name in self._categories

    def __len__(self):
        return len(self._categories)

    def __iter__(self):
        return iter(self.categories())

    def categories(self) -> List[Category]:
        with self._lock:
            return list(self._categories.values())

    def names(self) -> List[str]:
        with self._lock:
            return list(self._categories)

    def get(self, name: str) -> Optional[Category]:
        return self._categories.get(name)

    def require(self, name: str) -> Category:
        category = self._categories.get(name)
        if category is None:
            raise UnknownCategoryError(name)
        return category

    def add_category(self, name: str, color: Color = None) -> Category:
        if not name or not name.strip():
            raise ValueError("Category name must not be blank.")
        with self._lock:
            if name in self._categories:
                raise DuplicateNameError(f"Category '{name}' already exists.")
            category = Category(name, color)
            self._categories[name] = category
            self._counts.setdefault(name, 0)
            return category

    def get_or_add(self, name: str, color: Color = None) -> Tuple[Category, bool]:
        """Insert-if-absent. Returns (category, created); an existing category keeps its color."""
        with self._lock:
            existing = self._categories.get(name)
            if existing is not None:
                return existing, False
            return self.add_category(name, color), True

    def adopt(self, category: Category) -> Category:
        """Registers an externally built Category object unless the name exists.
        Returns the registered object for that name."""
        with self._lock:
            existing = self._categories.get(category.name)
            if existing is not None:
                return existing
            self._categories[category.name] = category
            self._counts.setdefault(category.name, 0)
            return category

    def rename_category(self, old: str, new: str):
        with self._lock:
            category = self.require(old)
            if new == old:
                return category
            if not new or not new.strip():
                raise ValueError("Category name must not be blank.")
            if new in self._categories:
                raise DuplicateNameError(f"Category '{new}' already exists.")
            #rebuild to keep the category at the same position
            self._categories = {(new if key == old else key): value for key, value in self._categories.items()}
            self._counts[new] = self._counts.pop(old, 0)
            category.name = new
            return category

    def recolor_category(self, name: str, color: Color):
        self.require(name).color = color

    def discard(self, name: str) -> Category:
        """Drops the category and its count entry. Shapes are the caller's concern."""
        with self._lock:
            category = self.require(name)
            del self._categories[name]
            self._counts.pop(name, None)
            return category

    def shape_count(self, name: str) -> int:
        return self._counts.get(name, 0)

    def counts(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def increment(self, name: str, by: int = 1):
        with self._lock:
            value = self._counts.get(name, 0) + by
            if value < 0:
                raise ValueError(f"Shape count for '{name}' would become negative.")
            self._counts[name] = value

    def decrement(self, name: str, by: int = 1):
        self.increment(name, -by)

    def set_counts(self, counts: Dict[str, int]):
        with self._lock:
            self._counts = {name: counts.get(name, 0) for name in self._categories}

    def clear_counts(self):
        with self._lock:
            self._counts = {name: 0 for name in self._categories}
