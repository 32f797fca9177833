"""Wrappers around the containers hearth operates."""
