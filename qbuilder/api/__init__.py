"""HTTP surface (Flask Blueprint)."""
