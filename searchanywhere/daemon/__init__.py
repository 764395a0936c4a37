"""Search service: sources, index lifecycle, history and aggregation."""
