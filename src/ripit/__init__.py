"""ripit - download media tracks and merge them into a single file."""

__version__ = "0.1.0"
