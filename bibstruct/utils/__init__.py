"""Utility helpers for bibstruct."""
