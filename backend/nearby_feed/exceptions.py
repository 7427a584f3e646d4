"""exceptions.py
~~~~~~~~~~~~~~~
Errors raised by the feed pipeline and its collaborators.

* ``PermissionDenied`` / ``SourceUnavailable`` surface from
  :meth:`UpdatePipeline.start` and :meth:`UpdatePipeline.stop`.
* ``ProviderFailure`` is raised by places providers and recovered by the
  pipeline as an empty Remote slice; the feed consumer never sees it.

Gate and guard drops are not errors and have no exception type.
"""

from __future__ import annotations


class NearbyFeedError(Exception):
    """Base class for every error raised by this package."""


class PermissionDenied(NearbyFeedError):
    """The user (or platform) refused location / signal access."""


class SourceUnavailable(NearbyFeedError):
    """A location or signal source could not be subscribed or released."""


class ProviderFailure(NearbyFeedError):
    """The remote places lookup could not complete."""


__all__ = [
    "NearbyFeedError",
    "PermissionDenied",
    "ProviderFailure",
    "SourceUnavailable",
]
