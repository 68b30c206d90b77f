"""Command line interface for rbmkit."""
