"""Application services shared by task handlers."""
