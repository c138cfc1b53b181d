"""
Guardrail validation for (mode, platform) pairs.

Pure policy check with no I/O. Runs before any network or filesystem
action for a job.

Rules:
- A restricted-only platform requires mode "restricted"
- Mode "unrestricted" is allowed only on the designated unrestricted platforms
"""

from dataclasses import dataclass, field
from typing import Optional, Union

from genorch.errors import PolicyViolation
from genorch.schemas.job import ExecutionMode


@dataclass(frozen=True)
class GuardrailPolicy:
    """Fixed policy table, built from configuration."""
    restricted_only_platforms: frozenset[str] = field(
        default_factory=lambda: frozenset({"platform_a", "platform_b", "platform_c"})
    )
    unrestricted_platforms: frozenset[str] = field(
        default_factory=lambda: frozenset({"platform_d"})
    )

    @classmethod
    def from_config(cls, config) -> "GuardrailPolicy":
        return cls(
            restricted_only_platforms=frozenset(config.restricted_only_platforms),
            unrestricted_platforms=frozenset(config.unrestricted_platforms),
        )

    def check(self, mode: Union[ExecutionMode, str], platform: str) -> Optional[str]:
        """Return the violated rule as a message, or None if the pair is allowed."""
        try:
            mode = ExecutionMode(mode)
        except ValueError:
            return f"unknown mode {mode!r}"

        if platform in self.restricted_only_platforms and mode is not ExecutionMode.RESTRICTED:
            return f"{platform} must be {ExecutionMode.RESTRICTED.value}"

        if mode is ExecutionMode.UNRESTRICTED and platform not in self.unrestricted_platforms:
            allowed = ", ".join(sorted(self.unrestricted_platforms))
            return f"{ExecutionMode.UNRESTRICTED.value} allowed only for {allowed}"

        return None

    def validate(self, mode: Union[ExecutionMode, str], platform: str, job_id: Optional[str] = None) -> None:
        """
        Raise PolicyViolation if the pair is not allowed.

        Raises:
            PolicyViolation: If a guardrail rule is broken
        """
        violation = self.check(mode, platform)
        if violation is not None:
            raise PolicyViolation(f"guardrail: {violation}", job_id=job_id)


DEFAULT_POLICY = GuardrailPolicy()


def validate(mode: Union[ExecutionMode, str], platform: str, policy: GuardrailPolicy = DEFAULT_POLICY) -> None:
    """Validate a (mode, platform) pair against policy (default table if omitted)."""
    policy.validate(mode, platform)
