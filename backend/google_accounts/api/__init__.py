"""HTTP API for the Google account service."""
