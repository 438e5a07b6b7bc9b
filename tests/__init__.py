"""stackboot test suite."""
