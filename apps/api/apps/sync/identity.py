"""
Actor reference resolution.

Mobile documents name the acting user in several shapes: the integer
user id (sometimes as a string), an email address, or the mobile-side
user identifier stored in `User.external_id`.
"""
import logging

from django.contrib.auth import get_user_model

from apps.core.observability import metrics

logger = logging.getLogger(__name__)

# Largest value a BigAutoField primary key can hold
MAX_USER_ID = 2 ** 63 - 1


class IdentityResolver:
    """
    Resolve raw actor references to user ids.

    Lookups are cached for the lifetime of the instance; the sync engine
    creates one resolver per cycle.
    """

    def __init__(self):
        self._cache = {}

    def resolve(self, raw):
        """Return a user id, or None when `raw` cannot be resolved."""
        if raw is None or isinstance(raw, bool):
            return None

        key = str(raw).strip()
        if not key:
            return None

        if key not in self._cache:
            self._cache[key] = self._lookup(key)
            if self._cache[key] is None:
                metrics.sync_identity_unresolved_total.inc()
                logger.debug(
                    'Actor reference unresolved',
                    extra={'event': 'sync_identity_unresolved', 'reference': key}
                )
        return self._cache[key]

    def _lookup(self, key):
        User = get_user_model()

        if key.isascii() and key.isdecimal():
            user_id = int(key)
            if user_id > MAX_USER_ID:
                return None
            return user_id if User.objects.filter(pk=user_id).exists() else None

        if '@' in key:
            lookup = {'email__iexact': key}
        else:
            lookup = {'external_id': key}

        return User.objects.filter(**lookup).values_list('pk', flat=True).first()
