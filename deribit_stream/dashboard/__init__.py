"""Status dashboard."""
