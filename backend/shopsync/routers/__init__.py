"""Route modules for the shopsync API."""
