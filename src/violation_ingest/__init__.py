"""Traffic-enforcement photo ingestion: dual-engine OCR, fallback merge, archive and persist."""

__version__ = "0.1.0"
