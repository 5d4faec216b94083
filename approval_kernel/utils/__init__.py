"""Utility functions for the approval kernel."""
