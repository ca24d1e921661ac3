"""Pipeline stage consumers. One process per stage, see runner.py."""
