"""Catalog domain exports."""
from .entity import Package, PackageServiceLine, Service
from .repository import CatalogRepository

__all__ = ["Package", "PackageServiceLine", "Service", "CatalogRepository"]
