"""Pipeline orchestration."""

from digester.services.run_service import RunOrchestrator, RunReport

__all__ = ["RunOrchestrator", "RunReport"]
