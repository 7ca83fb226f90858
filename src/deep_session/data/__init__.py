"""Bundled card decks."""
