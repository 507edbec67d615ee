"""Transport adapters for the operator relay."""
