"""
Result objects for core operations.

Provides a unified result structure the CLI can print as a summary or dump
as JSON.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any


@dataclass
class OperationResult:
    """
    Unified result object for finished core operations.

    Failures are raised as FlasherError subclasses, so a result always
    describes work that completed.

    Attributes:
        operation: Name of the operation (e.g., "upload_update", "patch")
        target: Where the bytes went (device path or output file)
        bytes_len: Number of bytes processed
        hashes: Dict of hash values (crc32, md5, ...)
        warnings: Non-blocking issues encountered
        metadata: Additional operation-specific data
    """
    operation: str
    target: str = ""
    bytes_len: int = 0
    hashes: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)

    def to_summary(self) -> str:
        """
        Generate a human-readable summary string.

        Suitable for CLI output or simple logging.
        """
        lines = [f"[SUCCESS] {self.operation}"]

        if self.target:
            lines.append(f"  Target: {self.target}")
        if self.bytes_len:
            lines.append(f"  Bytes: {self.bytes_len:,}")

        for name, value in self.hashes.items():
            lines.append(f"  {name}: {value}")

        for name, value in self.metadata.items():
            lines.append(f"  {name}: {value}")

        if self.warnings:
            lines.append("  Warnings:")
            for warn in self.warnings:
                lines.append(f"    - {warn}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "operation": self.operation,
            "target": self.target,
            "bytes_len": self.bytes_len,
            "hashes": self.hashes,
            "warnings": self.warnings,
            "metadata": self.metadata,
        }

    @classmethod
    def success(
        cls,
        operation: str,
        target: str = "",
        bytes_len: int = 0,
        **kwargs,
    ) -> "OperationResult":
        """Create a successful result."""
        return cls(
            operation=operation,
            target=target,
            bytes_len=bytes_len,
            **kwargs,
        )
