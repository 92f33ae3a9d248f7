"""Command-line client and result loading."""
