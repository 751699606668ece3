"""Command line interface for cwdeploy."""
