"""Utility functions for codebox."""
