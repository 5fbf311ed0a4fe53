"""HTTP boundary for job submission and progress reads."""
