"""Job lifecycle and asset reconciliation engine.

Architecture Overview
---------------------
Leaves first:

1. **image_info.py**: PNG/JPEG dimension sniffing and upload readiness
2. **paths.py**: collision-free naming inside the flat output directory
3. **ledger.py**: bounded, most-recent-first job ledger
4. **supervisor.py**: one supervised generation process per job
5. **gallery.py**: join of the ledger with the output directory

Around them:

- **config.py**: environment-based configuration (NANODASH_ prefix)
- **credentials.py**: credential lookup (environment, then secrets file)
- **automation.py**: browser-automation driver for contributor uploads
- **service.py**: DashboardService, the single owner of job state
- **errors.py**: typed failures with their HTTP status
"""

from nanodash.core.config import DashboardConfig, config
from nanodash.core.ledger import Job, JobLedger, JobStatus, JobType
from nanodash.core.service import DashboardService

__all__ = [
    "DashboardConfig",
    "DashboardService",
    "Job",
    "JobLedger",
    "JobStatus",
    "JobType",
    "config",
]
