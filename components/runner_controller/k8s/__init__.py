"""Access to the kubernetes API."""
