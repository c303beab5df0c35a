"""Session-based login portal."""
