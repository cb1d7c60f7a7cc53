"""Console output and operator prompts."""
