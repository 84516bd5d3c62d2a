"""Store directory sync."""

from .directory import StoreListing, fetch_store_directory, refresh_store_directory

__all__ = ["StoreListing", "fetch_store_directory", "refresh_store_directory"]
