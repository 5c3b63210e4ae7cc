"""VPS Control service layer."""
