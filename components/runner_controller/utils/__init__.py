"""Package for shared utility functionality."""
