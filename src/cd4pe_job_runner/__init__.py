"""Single-job CI/CD execution agent."""

__version__ = "0.1.0"
