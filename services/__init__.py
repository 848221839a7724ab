"""Import, analysis and orchestration services."""
