"""Job payload archive extraction."""

from cd4pe_job_runner.archive.extractor import TarExtractor, unzip

__all__ = ["TarExtractor", "unzip"]
