"""Function handlers, grouped by category package."""
