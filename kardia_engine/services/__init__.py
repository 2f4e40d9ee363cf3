"""Reply pipeline services."""
