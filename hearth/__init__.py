"""hearth - operations toolkit for a Docker Compose homelab."""

__version__ = "0.1.0"
