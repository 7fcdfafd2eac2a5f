from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

# Fluid ounces per container.
UNIT_CONVERSIONS: Dict[str, float] = {
    "BOTTLE_OZ": 25.36,  # 750 ml
    "LITER_OZ": 33.81,
    "MAGNUM_OZ": 50.72,  # 1.5 l
    "SHOT_OZ": 1.5,
    "GLASS_WINE_OZ": 6,
    "CAN_OZ": 12,
    "PINT_OZ": 16,
}


class IngredientUnit(str, Enum):
    UNIT = "unit"
    OZ = "oz"


@dataclass(frozen=True)
class Ingredient:
    name: str
    quantity: float
    unit: IngredientUnit = IngredientUnit.UNIT

    def containers_used(self, sold: float, container_oz: Optional[float], default_oz: float) -> float:
        """Stock units consumed when ``sold`` servings go out."""
        if self.unit == IngredientUnit.OZ:
            size = container_oz or default_oz
            return (self.quantity * sold) / size
        return self.quantity * sold


@dataclass(frozen=True)
class Recipe:
    name: str
    ingredients: Tuple[Ingredient, ...]


def _oz(name: str, qty: float) -> Tuple[Ingredient, ...]:
    return (Ingredient(name, qty, IngredientUnit.OZ),)


def _unit(name: str, qty: float = 1) -> Tuple[Ingredient, ...]:
    return (Ingredient(name, qty, IngredientUnit.UNIT),)


_POUR = 1.5
_WINE = UNIT_CONVERSIONS["GLASS_WINE_OZ"]

DRINK_RECIPES: Dict[str, Tuple[Ingredient, ...]] = {
    # signature cocktails
    "Pineapple Smash": _oz("Captain Morgan", 2),
    "Cucumber Cooler": _oz("Hendricks Gin", 2),
    "Lavender Vodka": _oz("Tito's Vodka", 2),
    # classics
    "Old Fashioned": _oz("Makers Mark", 2),
    "Moscow Mule": _oz("Tito's Vodka", _POUR),
    "Espresso Martini": _oz("Tito's Vodka", _POUR),
    "Margarita": _oz("1800 Silver", 2),
    "Mojito": _oz("Cruzan Light", 2),
    # spirits sold as a pour
    "Tito's Vodka": _oz("Tito's Vodka", _POUR),
    "Makers Mark": _oz("Makers Mark", _POUR),
    "Hendricks Gin": _oz("Hendricks Gin", _POUR),
    "Captain Morgan": _oz("Captain Morgan", _POUR),
    "1800 Silver": _oz("1800 Silver", _POUR),
    "Jameson Whiskey": _oz("Jameson Whiskey", _POUR),
    "Jack Daniels": _oz("JD's Whiskey", _POUR),
    "Crown Royal": _oz("Crown Royal", _POUR),
    "Patron Silver": _oz("Patron Silver", _POUR),
    "Don Julio": _oz("Don Julio", _POUR),
    "Grey Goose": _oz("G.Goose Vodka", _POUR),
    # wines by the glass
    "Canyon Rd Cab": _oz("Canyon Rd Cab", _WINE),
    "Daou Cab": _oz("Daou Cab", _WINE),
    "Josh Wine": _oz("Josh Wine", _WINE),
    "Moscato": _oz("Moscato", _WINE),
    "Pinot G": _oz("Pinot G", _WINE),
    "Sav Blanc": _oz("Sav Blanc", _WINE),
    "March Prosecco": _oz("March Prosecco", _WINE),
    # beer and seltzer by the can/bottle
    "Bud Light": _unit("Bud Light"),
    "Coors Light": _unit("Coors Light"),
    "Michelob Ultra": _unit("Michelob Ultra"),
    "Miller Lite": _unit("Miller Lite"),
    "Dos XX": _unit("Dos XX"),
    "Heineken": _unit("Heineken"),
    "Shiner Bock": _unit("Shiner Bock"),
    "Stella Artois": _unit("Stella Artois"),
    "Corona Extra": _unit("Corona Extra"),
    "Truly's Seltzer": _unit("Truly's Seltzer"),
    "White Claw": _unit("White Claw"),
}


class RecipeBook:
    """Read-only recipe lookup keyed by exact sellable name."""

    def __init__(self, recipes: Optional[Mapping[str, Iterable[Ingredient]]] = None) -> None:
        source = DRINK_RECIPES if recipes is None else recipes
        self._recipes: Dict[str, Recipe] = {
            name: Recipe(name=name, ingredients=tuple(ingredients)) for name, ingredients in source.items()
        }

    def lookup(self, name: str) -> Optional[Recipe]:
        return self._recipes.get(name)

    def names(self) -> List[str]:
        return list(self._recipes.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._recipes

    def __len__(self) -> int:
        return len(self._recipes)


__all__ = ["UNIT_CONVERSIONS", "IngredientUnit", "Ingredient", "Recipe", "RecipeBook", "DRINK_RECIPES"]
