"""Address propensity: property/propensity ingestion and ranked zip code search."""

__version__ = "0.1.1"
