"""Murmur chat backend application."""
