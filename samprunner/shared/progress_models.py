"""
Progress Data Models

Shared data models for representing copy and download progress.
Used by the installation service and the CLI progress bars.
"""

from dataclasses import dataclass
from typing import Optional


def format_bytes(bytes_val: float) -> str:
    """Format bytes to human-readable format."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_val < 1024.0:
            return f"{bytes_val:.1f}{unit}"
        bytes_val /= 1024.0
    return f"{bytes_val:.1f}PB"


@dataclass
class TransferProgress:
    """Progress of a bulk copy or a download."""
    bytes_done: int = 0
    bytes_total: int = 0  # 0 if unknown
    files_done: int = 0
    files_total: int = 0
    current_file: Optional[str] = None

    @property
    def fraction(self) -> float:
        """Fraction complete in [0, 1]. An empty transfer counts as complete."""
        if self.bytes_total > 0:
            return max(0.0, min(1.0, self.bytes_done / self.bytes_total))
        if self.files_total > 0:
            return max(0.0, min(1.0, self.files_done / self.files_total))
        return 1.0

    @property
    def data_progress_text(self) -> str:
        """Get data progress text like '1.1GB/4.7GB'."""
        if self.bytes_total > 0:
            return f"{format_bytes(self.bytes_done)}/{format_bytes(self.bytes_total)}"
        elif self.bytes_done > 0:
            return format_bytes(self.bytes_done)
        return ""

    def describe(self) -> str:
        """One-line status message, e.g. 'Copying models/gta3.img (1.1GB/4.7GB)'."""
        text = self.data_progress_text
        if self.current_file:
            return f"Copying {self.current_file} ({text})" if text else f"Copying {self.current_file}"
        return text
