"""Google API integrations."""
