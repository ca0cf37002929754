"""Utility helpers shared across taylorkit."""
