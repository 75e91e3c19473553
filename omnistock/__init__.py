"""Multi-warehouse inventory tracking with a Flask API, Redis events and low-stock alerts."""

__version__ = "1.0.0"
__all__ = ["__version__"]