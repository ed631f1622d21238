"""Murmur realtime chat core."""
