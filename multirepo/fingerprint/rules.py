#!/usr/bin/env python3
"""
Cache Invalidation Rules and Policies

This module defines the verdicts the setup cache hands back to the
orchestrator and the triggers that explain them. Every "must run" verdict
carries the dimension that caused it, so a decision can be asserted
without parsing log text.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class InvalidationTrigger(Enum):
    """Events that force a phase to run."""

    MANUAL = "manual"  # --skip-cache, --force-all or a phase force flag
    NO_PREVIOUS_SUCCESS = "no_previous_success"  # No record, or last run failed
    CONFIG_CHANGED = "config_changed"  # Repository list changed
    TRAIT_SCRIPT_CHANGED = "trait_script_changed"  # Trait hook or settings changed
    CUSTOM_SCRIPT_CHANGED = "custom_script_changed"  # Repository hook script changed
    CONTENT_CHANGED = "content_changed"  # Repository working tree changed
    DEPENDENCY_CHANGED = "dependency_changed"  # Package manifest changed


class CacheAction(Enum):
    """Actions the orchestrator can take for a phase."""

    SKIP = "skip"  # Cache is valid
    RUN = "run"  # Cache invalid or missing


# Reason text logged and reported for each trigger
TRIGGER_REASONS: dict[InvalidationTrigger, str] = {
    InvalidationTrigger.MANUAL: "cache override",
    InvalidationTrigger.NO_PREVIOUS_SUCCESS: "no previous success",
    InvalidationTrigger.CONFIG_CHANGED: "configuration changed",
    InvalidationTrigger.TRAIT_SCRIPT_CHANGED: "trait scripts changed",
    InvalidationTrigger.CUSTOM_SCRIPT_CHANGED: "custom script changed",
    InvalidationTrigger.CONTENT_CHANGED: "repository content changed",
    InvalidationTrigger.DEPENDENCY_CHANGED: "dependency files changed",
}


@dataclass(frozen=True)
class CacheDecision:
    """
    Result of evaluating the cache rules for one repository and phase.

    Attributes:
        action: Skip or run
        reason: Human-readable explanation for the action
        trigger: Trigger that forced the run (None for a skip)
        verified: Dimensions confirmed unchanged (populated for a skip)
    """

    action: CacheAction
    reason: str
    trigger: Optional[InvalidationTrigger] = None
    verified: tuple[str, ...] = field(default_factory=tuple)

    @property
    def can_skip(self) -> bool:
        return self.action is CacheAction.SKIP


class CacheInvalidationRules:
    """Builders for cache decisions."""

    @staticmethod
    def run(trigger: InvalidationTrigger) -> CacheDecision:
        """
        Build a "must run" decision for a trigger.

        Args:
            trigger: The dimension that invalidated the cache

        Returns:
            CacheDecision with the trigger's standard reason
        """
        return CacheDecision(
            action=CacheAction.RUN,
            reason=TRIGGER_REASONS[trigger],
            trigger=trigger,
        )

    @staticmethod
    def skip(verified: tuple[str, ...]) -> CacheDecision:
        """
        Build a "can skip" decision.

        Args:
            verified: Dimensions that were checked and found unchanged

        Returns:
            CacheDecision listing the verified dimensions
        """
        return CacheDecision(
            action=CacheAction.SKIP,
            reason=f"no changes detected ({', '.join(verified)})",
            verified=verified,
        )
