"""Feed aggregation and reputation engine."""
