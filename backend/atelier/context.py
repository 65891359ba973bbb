from __future__ import annotations

from dataclasses import dataclass, field

from atelier.enums import MachineType, UserRole


@dataclass(frozen=True)
class Actor:
    """Utilisateur authentifié pour la requête en cours, passé explicitement au cœur."""

    id: int
    role: UserRole
    machines: frozenset[MachineType] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def can_use(self, machine: MachineType) -> bool:
        return self.is_admin or machine in self.machines
