"""Command line interface for the heat map batch pipeline."""
