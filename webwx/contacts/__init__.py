"""Contact bookkeeping."""
