"""Store-specific tests."""
