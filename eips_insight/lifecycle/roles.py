"""Actor-role directory: decides whether an actor is an editor or the PR author."""
from typing import Iterable, List, Optional

from eips_insight.data_models.events import ActorRole, ProposalEvent


class RoleDirectory:
    """Resolves actor roles relative to a pull request's author.

    The author of a PR always acts as the author on that PR, even when they
    are also an editor. An actor the directory cannot place is returned as
    ``None`` so the classifier can degrade instead of guessing.
    """

    def __init__(self, editors: Iterable[str] = ()):
        self._editors = frozenset(e.strip().lower() for e in editors if e and e.strip())

    @property
    def editors(self) -> frozenset:
        return self._editors

    def with_editors(self, extra: Iterable[str]) -> "RoleDirectory":
        return RoleDirectory(set(self._editors) | {e.lower() for e in extra if e})

    def is_editor(self, actor: Optional[str]) -> bool:
        return bool(actor) and actor.lower() in self._editors

    def role_for(self, actor: Optional[str], pr_author: Optional[str]) -> Optional[ActorRole]:
        if not actor:
            return None
        login = actor.strip().lower()
        if pr_author and login == pr_author.strip().lower():
            return ActorRole.AUTHOR
        if login in self._editors:
            return ActorRole.EDITOR
        if login.endswith("[bot]"):
            return ActorRole.BOT
        if pr_author:
            return ActorRole.OTHER
        return None

    def annotate(self, events: Iterable[ProposalEvent], pr_author: Optional[str]) -> List[ProposalEvent]:
        """Fill in ``actor_role`` for events that do not carry one yet."""
        annotated = []
        for event in events:
            if event.actor_role is None:
                role = self.role_for(event.actor, pr_author)
                if role is not None:
                    event = event.model_copy(update={"actor_role": role})
            annotated.append(event)
        return annotated
