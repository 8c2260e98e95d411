"""Tunable transfer settings shared by adapters and orchestrators."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Tuple

MIB = 1024 * 1024


@dataclass
class TransferSettings:
    """Configuration for transfers, listings and timeouts."""
    part_size: int = 5 * MIB
    part_workers: int = 4
    max_concurrent_transfers: int = 8
    delete_batch_size: int = 1000
    list_page_size: int = 1000
    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    throughput_window: float = 0.5
    download_dir: Path = field(default_factory=lambda: Path.home() / "Downloads")

    def __post_init__(self) -> None:
        self.download_dir = Path(self.download_dir).expanduser()
        if self.part_size < 5 * MIB:
            raise ValueError("part_size must be at least 5 MiB")
        if self.part_workers < 1:
            raise ValueError("part_workers must be at least 1")
        if not 1 <= self.delete_batch_size <= 1000:
            raise ValueError("delete_batch_size must be between 1 and 1000")

    @property
    def timeout(self) -> Tuple[float, float]:
        """(connect, read) timeout pair as accepted by requests."""
        return (self.connect_timeout, self.read_timeout)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "part_size": self.part_size,
            "part_workers": self.part_workers,
            "max_concurrent_transfers": self.max_concurrent_transfers,
            "delete_batch_size": self.delete_batch_size,
            "list_page_size": self.list_page_size,
            "connect_timeout": self.connect_timeout,
            "read_timeout": self.read_timeout,
            "throughput_window": self.throughput_window,
            "download_dir": str(self.download_dir),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferSettings":
        """Create settings from a dictionary, ignoring unknown keys."""
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if "part_size_mb" in data:
            known["part_size"] = int(float(data["part_size_mb"]) * MIB)
        return cls(**known)
