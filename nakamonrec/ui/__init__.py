"""HTTP control surface (Flask)."""
