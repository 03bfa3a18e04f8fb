# core/models/domain.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from django.db import models, transaction

from core.domain.dispatcher import emit as emit_domain_event
from core.domain.events import DomainEvent


class StatefulDomainModel(models.Model):
    """
    Abstract model with a state field whose changes run hooks.

    Hooks are methods decorated with core.domain.hooks.on_transition; they
    are discovered once per subclass and executed after the surrounding
    transaction commits, so a rolled back transition never emits anything.
    """

    STATUS_FIELD_NAME: str = "status"

    _transition_hooks: List[Tuple[str, Any, Any, str]] = []

    class Meta:
        abstract = True

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)

        hooks: List[Tuple[str, Any, Any, str]] = []
        for base in cls.__mro__[1:]:
            hooks.extend(getattr(base, "_transition_hooks", []))

        for attr_name, attr_value in cls.__dict__.items():
            meta = getattr(attr_value, "__transition__", None)
            if callable(attr_value) and meta is not None:
                field_name, from_state, to_state = meta
                hooks.append((field_name, from_state, to_state, attr_name))

        cls._transition_hooks = hooks

    def emit(self, event: DomainEvent) -> None:
        emit_domain_event(event)

    def _run_transition_hooks(self, field_name: str, old: Any, new: Any) -> None:
        for hook_field, from_state, to_state, method_name in self._transition_hooks:
            if hook_field != field_name or to_state != new:
                continue
            # from_state None means "from any state"
            if from_state is not None and from_state != old:
                continue
            getattr(self, method_name)()

    def save(self, *args, **kwargs) -> None:
        field_name = self.STATUS_FIELD_NAME
        old_state: Optional[Any] = None

        if not self._state.adding:
            row: Optional[Dict[str, Any]] = (
                type(self)._base_manager.filter(pk=self.pk).values(field_name).first()
            )
            if row is not None:
                old_state = row[field_name]

        super().save(*args, **kwargs)

        new_state = getattr(self, field_name)
        if old_state is None or old_state == new_state:
            return

        transaction.on_commit(
            lambda: self._run_transition_hooks(field_name, old_state, new_state)
        )
