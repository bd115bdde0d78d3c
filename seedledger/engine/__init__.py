"""Pure settlement arithmetic: scoring rules and the leveling curve."""
