"""Command handlers, grouped by area. ``COMMAND_MODULES`` is the registration order."""

from . import cart, lookup, orders, products, stock, system

COMMAND_MODULES = (cart, lookup, orders, products, stock, system)

__all__ = ["COMMAND_MODULES", "cart", "lookup", "orders", "products", "stock", "system"]
