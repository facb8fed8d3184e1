"""Admin for items, persons and projects with tag catalogs and components."""

__version__ = "0.1.0"
