"""Discord gateway client and interaction handlers."""
