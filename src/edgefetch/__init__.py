"""edgefetch: acquire model artifacts from a model hub for offline use."""

__version__ = "0.1.0"
