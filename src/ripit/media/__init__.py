"""Media metadata models and the download/merge pipeline."""
