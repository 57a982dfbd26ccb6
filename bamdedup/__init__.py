"""Sambamba-consistent duplicate marking for BAM files."""

__version__ = "0.1.0"
__all__ = ["algorithm", "args", "bamio", "markdup", "metadata", "utils"]