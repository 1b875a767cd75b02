"""Process-level concerns: logging bootstrap and runtime wiring."""
