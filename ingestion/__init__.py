"""
Report acquisition pipeline.

Modules:
    base: Date modes and the ReportSource interface
    sources: Builds the configured sources from settings and registries
    runner: Watermark-driven sync controller
    scheduler: APScheduler integration for periodic sync runs

Subpackages:
    extractors: Datamart REST, ESMIS bulletin and GHCN-Daily FTP adapters
    transformers: Row normalization, bulletin parsing and fixed-width decoding
    loaders: Idempotent PostgreSQL persistence and watermark lookup

Example:
    async with async_session_maker() as session:
        controller = SyncController(session, build_sources())
        results = await controller.run()
"""

__all__ = [
    "DateMode",
    "ReportSource",
    "SyncController",
    "SyncScheduler",
    "build_sources",
    "DatamartExtractor",
    "BulletinExtractor",
    "GHCNExtractor",
    "PostgresLoader",
]
