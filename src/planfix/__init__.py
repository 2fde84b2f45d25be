"""Plan execution and self-correction engine."""
