"""calstore command-line interface."""
