"""HTTP blueprints for the access gate."""
