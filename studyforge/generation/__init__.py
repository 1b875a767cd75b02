"""Generation request model, fingerprinting, and deduplication."""
