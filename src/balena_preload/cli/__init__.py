"""Command-line surface: options, display, error reporting."""
