"""Pure data model, error taxonomy, and text rewrite rules (no I/O)."""
