"""Provider adapters, dispatch routing and stream normalization."""
