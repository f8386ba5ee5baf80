"""Grade and name helpers."""
