"""Logging and metrics for watchfactory."""
