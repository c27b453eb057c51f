"""
Pin Ownership — translates quest/objective visibility into pin ownership.

    quest hidden            -> everyone NONE, privileged users OWNER
    objective hidden        -> everyone NONE, privileged users OWNER
    otherwise               -> everyone OBSERVER, privileged users OWNER

Pure and deterministic: identical inputs always give an equal map, which
reconciliation relies on to stay idempotent.
"""

from typing import Iterable, List, Optional

from models.pins import OwnershipLevel, OwnershipMap
from models.quests import Objective, ObjectiveState, Quest


def calculate_pin_ownership(
    quest_visible: bool,
    objective_state: Optional[ObjectiveState],
    privileged_user_ids: Iterable[str],
) -> OwnershipMap:
    users = {str(uid): OwnershipLevel.OWNER for uid in sorted(set(privileged_user_ids))}

    if quest_visible is False:
        return OwnershipMap(default=OwnershipLevel.NONE, users=users)
    if objective_state == ObjectiveState.HIDDEN:
        return OwnershipMap(default=OwnershipLevel.NONE, users=users)
    return OwnershipMap(default=OwnershipLevel.OBSERVER, users=users)


class PinOwnershipCalculator:
    """Binds the privileged-user set so callers only pass quest and objective.

    Built from a vault, the GM list is read from the user documents on every
    call, so a role change takes effect without a restart.
    """

    def __init__(self, privileged_user_ids: Iterable[str] = (), vault=None):
        self._fixed_ids = sorted(set(str(u) for u in privileged_user_ids))
        self.vault = vault

    @classmethod
    def from_vault(cls, vault) -> "PinOwnershipCalculator":
        return cls(vault=vault)

    @property
    def privileged_user_ids(self) -> List[str]:
        if self.vault is None:
            return self._fixed_ids
        return sorted(set(str(u) for u in self.vault.get_privileged_user_ids()))

    def ownership_for(self, quest: Quest, objective: Optional[Objective] = None) -> OwnershipMap:
        state = objective.state if objective is not None else None
        return calculate_pin_ownership(quest.visible, state, self.privileged_user_ids)
