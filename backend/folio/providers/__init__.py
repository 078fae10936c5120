"""Market-data providers and the cached market-data service."""
