"""Users, sessions and the context-based login trust engine."""
