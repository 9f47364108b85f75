"""HTTP surface for the auth core."""
