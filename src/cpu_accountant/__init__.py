"""Per-user CPU time accounting over a fixed monitoring window."""
