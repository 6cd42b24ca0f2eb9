"""
Spec schema - the declarative change request.

A Spec is the static input to a Job: what to change (goal), what must hold
while changing it (constraints), and how success is judged (acceptance
criteria plus an optional verification configuration). It is immutable once
loaded and is referenced, never copied, by the Job that executes it.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Optional

from chakravarti.errors import InvalidSpecError

SPEC_ID_PATTERN = re.compile(r"[A-Za-z0-9_]+")


@dataclass(frozen=True)
class VerifyConfig:
    """
    Verification configuration run inside the sandbox.

    Attributes:
        image: Container image for verification (None = sandbox default)
        commands: Shell commands whose success gates the change
    """
    image: Optional[str] = None
    commands: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"commands": list(self.commands)}
        if self.image is not None:
            result["image"] = self.image
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VerifyConfig":
        return cls(
            image=data.get("image"),
            commands=tuple(data.get("commands", [])),
        )


@dataclass(frozen=True)
class Spec:
    """
    A specification defining a desired code change.

    Attributes:
        id: Unique identifier (alphanumeric and underscores)
        goal: Human-readable goal statement
        constraints: Ordered constraints that must be respected
        acceptance: Ordered acceptance criteria used for verification
        verify: Optional sandbox verification configuration
        source_path: File the spec was loaded from (not serialized)
    """
    id: str
    goal: str
    constraints: tuple[str, ...] = field(default_factory=tuple)
    acceptance: tuple[str, ...] = field(default_factory=tuple)
    verify: Optional[VerifyConfig] = None
    source_path: Optional[str] = field(default=None, compare=False)

    def validate(self) -> None:
        """
        Validate the specification.

        Raises:
            InvalidSpecError: If id, goal or acceptance criteria are malformed
        """
        if not self.id:
            raise InvalidSpecError("id is required")
        if not SPEC_ID_PATTERN.fullmatch(self.id):
            raise InvalidSpecError("id must be alphanumeric with underscores")
        if not self.goal:
            raise InvalidSpecError("goal is required")
        if not self.acceptance:
            raise InvalidSpecError("at least one acceptance criterion is required")

    @property
    def verify_commands(self) -> tuple[str, ...]:
        return self.verify.commands if self.verify else ()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON/YAML output."""
        result: dict[str, Any] = {
            "id": self.id,
            "goal": self.goal,
            "constraints": list(self.constraints),
            "acceptance": list(self.acceptance),
        }
        if self.verify is not None:
            result["verify"] = self.verify.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any], source_path: Optional[str] = None) -> "Spec":
        """Deserialize from dictionary."""
        verify = data.get("verify")
        return cls(
            id=data["id"],
            goal=data["goal"],
            constraints=tuple(data.get("constraints", [])),
            acceptance=tuple(data.get("acceptance", [])),
            verify=VerifyConfig.from_dict(verify) if verify else None,
            source_path=source_path,
        )
