"""Catalog fetch, transform, ontology and refresh orchestration."""
