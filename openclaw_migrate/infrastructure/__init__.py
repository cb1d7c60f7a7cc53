"""Host access: commands, probes, policy loading, atomic writes, run reports."""
