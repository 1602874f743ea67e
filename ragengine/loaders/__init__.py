"""Document loaders that fetch source content for ingestion."""
