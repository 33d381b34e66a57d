"""
hplink - Link Configuration
===========================

Timing and retry settings shared by every transport. Configuration can
come from:
- Default values (defined here, matching calculator behaviour)
- Environment variables (HPLINK_*)
- Command-line options (the CLI overrides individual fields)

The calculators are slow to turn the line around, which is why several
defaults are measured in hundreds of milliseconds or whole seconds:
- 0.3s settle delay before reading a server reply
- 0.5s before requesting the first block of a receive
- 3s between handshake polls
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Mapping, Optional


@dataclass(frozen=True)
class LinkSettings:
    """
    Timing and retry configuration for one link.

    Attributes:
        read_timeout: Deadline for a single response (ACK, frame, packet).
        handshake_attempts: Polls for the peer's mode signal before
            HandshakeTimeoutError.
        handshake_interval: Wait per handshake poll, in seconds.
        max_retries: Retransmissions allowed per frame or packet.
        command_delay: Pause before reading a server reply or sending Q.
        receive_delay: Pause before requesting the first block.
        kermit_packet_size: MAXL we announce in Send-Init.
        kermit_timeout: TIME we announce in Send-Init (seconds).
    """

    # ═══════════════════════════════════════════════════════════════════════
    # TIMING
    # ═══════════════════════════════════════════════════════════════════════

    read_timeout: float = 4.0
    handshake_attempts: int = 4
    handshake_interval: float = 3.0
    command_delay: float = 0.3
    receive_delay: float = 0.5

    # ═══════════════════════════════════════════════════════════════════════
    # RETRIES
    # ═══════════════════════════════════════════════════════════════════════

    max_retries: int = 3

    # ═══════════════════════════════════════════════════════════════════════
    # KERMIT
    # ═══════════════════════════════════════════════════════════════════════

    kermit_packet_size: int = 94
    kermit_timeout: int = 2

    def __post_init__(self) -> None:
        if self.handshake_attempts < 1:
            raise ValueError("handshake_attempts must be at least 1")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if not 10 <= self.kermit_packet_size <= 94:
            raise ValueError(
                f"kermit_packet_size must be 10-94, got {self.kermit_packet_size}"
            )

    # ═══════════════════════════════════════════════════════════════════════
    # FACTORY METHODS
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LinkSettings":
        """
        Create LinkSettings from environment variables.

        Each field can be overridden by the upper-cased field name with
        an HPLINK_ prefix, e.g. HPLINK_READ_TIMEOUT=6 or
        HPLINK_MAX_RETRIES=5.

        Args:
            environ: Mapping to read instead of os.environ.

        Raises:
            ValueError: If a variable does not parse as the field's type.
        """
        if environ is None:
            environ = os.environ

        overrides = {}
        for f in fields(cls):
            raw = environ.get(f"HPLINK_{f.name.upper()}")
            if raw is None:
                continue
            default = getattr(cls, f.name)
            try:
                overrides[f.name] = type(default)(raw)
            except ValueError:
                raise ValueError(f"Invalid value for HPLINK_{f.name.upper()}: {raw!r}")
        return cls(**overrides)

    def with_overrides(self, **changes) -> "LinkSettings":
        """Return a copy with the given fields replaced; None values are skipped."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


DEFAULT_SETTINGS = LinkSettings()
