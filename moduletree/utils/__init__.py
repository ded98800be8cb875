"""Utility helpers for the moduletree CLI."""
