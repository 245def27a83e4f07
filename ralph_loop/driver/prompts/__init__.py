"""Prompt templates and rendering."""
