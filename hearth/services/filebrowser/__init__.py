"""Filebrowser user and share administration."""

from .admin import PERMISSIONS, FilebrowserAdmin, FilebrowserError, parse_permissions

__all__ = [
    "PERMISSIONS",
    "FilebrowserAdmin",
    "FilebrowserError",
    "parse_permissions",
]
