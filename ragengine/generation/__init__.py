"""Answer generation from assembled context."""
