"""Reconciliation of Runner resources."""
