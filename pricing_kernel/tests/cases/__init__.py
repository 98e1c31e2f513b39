"""pytest cases; each module also exposes check_* functions used by validation.py."""
