"""Progress tracking for studio shot generation."""

from typing import Dict, List


class ProgressTracker:
    """Tracks statistics for the current session."""

    def __init__(self):
        """Initialize the progress tracker."""
        self.reset()

    def increment_processed(self):
        """Increment the total processed counter."""
        self.stats["total_processed"] += 1

    def increment_successful(self, job_id: str):
        """Increment successful counter and remember the job.

        Args:
            job_id: Id of the job that received a studio shot
        """
        self.stats["successful"] += 1
        self.stats["completed_jobs"].append(job_id)

    def increment_errors(self):
        """Increment the errors counter."""
        self.stats["errors"] += 1

    def add_uploaded(self, count: int):
        self.stats["uploaded"] += count

    def add_deleted(self, count: int):
        self.stats["deleted"] += count

    def get_stats(self) -> Dict:
        """Get current statistics.

        Returns:
            Dictionary containing current stats
        """
        stats = self.stats.copy()
        stats["completed_jobs"] = list(self.stats["completed_jobs"])
        return stats

    def reset(self):
        """Reset all statistics to zero."""
        self.stats = {
            "uploaded": 0,
            "total_processed": 0,
            "successful": 0,
            "errors": 0,
            "deleted": 0,
            "completed_jobs": [],
        }
