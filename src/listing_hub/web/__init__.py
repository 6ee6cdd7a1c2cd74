"""HTTP API for listing search, favorites and queue submission."""
