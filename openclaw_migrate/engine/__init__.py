"""Discovery, preflight, and the migration pipeline with its dry-run shim."""
