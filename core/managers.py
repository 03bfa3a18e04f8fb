# core/managers.py
from django.db import models


class SoftDeleteQuerySet(models.QuerySet):
    """
    Base QuerySet for models inheriting core.models.SoftDeleteModel.

    - visible(): not soft-deleted
    - deleted(): soft-deleted only
    """

    def visible(self):
        return self.filter(is_deleted=False)

    def deleted(self):
        return self.filter(is_deleted=True)
