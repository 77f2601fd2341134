"""
Data shapes shared across the pipeline.

Schemas:
    report: Report and section declarations, loaded from TOML registries
    package: In-memory Package and Record produced by every source
    datamart: Datamart response envelope
    noaa: GHCN-Daily flags and observations
"""

__all__ = [
    "ReportSchema",
    "SectionSchema",
    "load_registry",
    "Package",
    "Record",
    "DatamartResponse",
]
