"""Service entry points built on the kctgov library."""
