"""Digital asset registry and marketplace."""
