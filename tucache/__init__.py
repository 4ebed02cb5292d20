"""Caching crawler for the TUCaN campus portal."""
