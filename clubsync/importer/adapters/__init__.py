"""Source-system adapters for the importer."""
