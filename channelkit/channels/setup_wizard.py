"""
Setup Wizard — per-platform multi-step credential collection.

The wizard holds no state of its own: which steps are complete and where
the user resumes are a pure function of the credential store. The derived
state is cached against the store's per-platform version counter and
recomputed whenever it moves.

Usage:
    wizard = SetupWizard(Platform.WHATSAPP, store, issuer)
    wizard.current_step            # 0 on first visit
    result = await wizard.advance()
    if not result.ok:
        print(result.missing_fields)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional

from channelkit.channels.credential_store import CredentialStore
from channelkit.channels.models import AdvanceResult
from channelkit.channels.platforms import Platform, get_platform_profile
from channelkit.channels.webhook_issuer import WebhookURLIssuer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SetupWizardState:
    platform: Platform
    step_count: int
    completed_steps: FrozenSet[int]
    current_step_index: Optional[int]

    @property
    def is_complete(self) -> bool:
        return self.current_step_index is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform.value,
            "step_count": self.step_count,
            "completed_steps": sorted(self.completed_steps),
            "current_step": self.current_step_index,
            "is_complete": self.is_complete,
        }


class SetupWizard:
    def __init__(
        self,
        platform,
        store: CredentialStore,
        issuer: Optional[WebhookURLIssuer] = None,
    ):
        self.platform = Platform.parse(platform)
        self.profile = get_platform_profile(self.platform)
        self._store = store
        self._issuer = issuer
        self._cached: Optional[SetupWizardState] = None
        self._cached_version = -1

    @property
    def step_count(self) -> int:
        return self.profile.step_count

    def state(self) -> SetupWizardState:
        version = self._store.version(self.platform)
        if self._cached is None or version != self._cached_version:
            self._cached = self._compute()
            self._cached_version = version
        return self._cached

    def _compute(self) -> SetupWizardState:
        completed = frozenset(
            step.index for step in self.profile.steps
            if self._store.all_fields_present(self.platform, step.field_names)
        )
        current = next(
            (step.index for step in self.profile.steps if step.index not in completed),
            None,
        )
        return SetupWizardState(
            platform=self.platform,
            step_count=self.step_count,
            completed_steps=completed,
            current_step_index=current,
        )

    @property
    def current_step(self) -> Optional[int]:
        return self.state().current_step_index

    @property
    def completed_steps(self) -> FrozenSet[int]:
        return self.state().completed_steps

    def is_complete(self) -> bool:
        return self.state().is_complete

    def missing_fields(self, step_index: int) -> List[str]:
        step = self.profile.steps[step_index]
        return self._store.missing_fields(self.platform, step.field_names)

    def can_advance(self, step_index: int) -> bool:
        if step_index < 0 or step_index >= self.step_count:
            return False
        return not self.missing_fields(step_index)

    async def advance(self, step_index: Optional[int] = None) -> AdvanceResult:
        """
        Leave ``step_index`` (default: the current step).

        Returns ok=False with the missing fields instead of raising. Leaving
        the step before the webhook step issues the webhook URL so the
        webhook slot is already filled when the user gets there; the default
        call resolves to the webhook step itself once the step before it is
        filled, so issuing happens there too.
        """
        if step_index is None:
            step_index = self.current_step
            if step_index is None:
                return AdvanceResult(ok=True, step_index=self.step_count - 1)

        if step_index < 0 or step_index >= self.step_count:
            return AdvanceResult(ok=False, step_index=step_index)

        webhook = None
        webhook_step = self.step_count - 1
        if (
            step_index == webhook_step
            and self._issuer is not None
            and webhook_step - 1 in self.completed_steps
        ):
            # Reached the webhook step without leaving the one before it
            webhook = await self._issuer.issue(self.platform)

        missing = self.missing_fields(step_index)
        if missing:
            logger.info(
                "[WIZARD] %s step %d blocked, missing %s",
                self.platform.slug, step_index, ", ".join(missing),
            )
            return AdvanceResult(
                ok=False, step_index=step_index, missing_fields=missing, webhook=webhook,
            )

        if step_index == webhook_step - 1 and self._issuer is not None:
            webhook = await self._issuer.issue(self.platform)

        next_step = step_index + 1 if step_index + 1 < self.step_count else None
        logger.info("[WIZARD] %s advanced past step %d", self.platform.slug, step_index)
        return AdvanceResult(ok=True, step_index=step_index, next_step=next_step, webhook=webhook)

    def reset(self) -> None:
        self._store.reset(self.platform)
