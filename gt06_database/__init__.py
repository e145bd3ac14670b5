"""CSV output for LOGS mode."""
