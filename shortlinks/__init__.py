"""Short links with redirect analytics."""
