"""Exceptions for use across all Doreen components.
"""

__docformat__ = 'restructuredtext'


class DoreenException(Exception):
    pass


class NotAuthorised(DoreenException):
    """The user lacks the access bits required for a ticket or ACL."""
    pass


class NotFound(DoreenException, LookupError):
    """The ticket does not exist, was deleted, or may not be revealed."""
    pass


class InvalidFilter(DoreenException, ValueError):
    """A search request is malformed.

    Raised for unknown or unsortable sort fields, unknown drill-down
    field IDs and score ordering without a fulltext term. It is always
    raised before any SQL is sent to the store.
    """
    pass


class StoreError(DoreenException):
    """Any failure reported by the relational backend.

    'stage' names the pipeline step that was talking to the store when
    the error occurred (e.g. 'count', 'stage-1', 'stage-2'); it may be
    None for errors raised outside the search pipeline.
    """
    def __init__(self, message, stage=None):
        DoreenException.__init__(self, message)
        self.stage = stage

    def __str__(self):
        message = DoreenException.__str__(self)
        if self.stage:
            return '%s (during %s)' % (message, self.stage)
        return message


class UsageError(ValueError):
    pass

# vim: set filetype=python ts=4 sw=4 et si
