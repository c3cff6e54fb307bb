"""Third-party provider integrations."""
