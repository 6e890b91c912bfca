"""Domain models, enums and errors shared across Listing Radar."""
