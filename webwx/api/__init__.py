"""Backend collaborators."""
