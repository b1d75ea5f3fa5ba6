"""Registry operation helpers."""
