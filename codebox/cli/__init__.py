"""CLI module for codebox."""
