# sqlalchemy_network/exc.py
# Copyright (C) 2022 the sqlalchemy-network authors and contributors
# <see AUTHORS file>
#
# This module is part of sqlalchemy-network and is released under
# the MIT License: https://www.opensource.org/licenses/mit-license.php

"""Exceptions used with sqlalchemy-network.

The base exception class is :exc:`.NetworkError`, itself a
:exc:`sqlalchemy.exc.SQLAlchemyError`.  Each concrete error also derives
from the SQLAlchemy exception it corresponds to, so that code which already
catches e.g. :exc:`sqlalchemy.exc.NoResultFound` keeps working.

Errors raised by the database or by the ORM while a member set is being
queried are never wrapped; they propagate as raised.

"""
from __future__ import annotations

from typing import Any
from typing import Sequence

from sqlalchemy import exc as sa_exc


class NetworkError(sa_exc.SQLAlchemyError):
    """Generic error class."""


class RecordNotFound(NetworkError, sa_exc.NoResultFound):
    """Raised when an identifier lookup against a
    :class:`.UnionCollection` can't account for every requested identity.

    :attr:`.ids` holds the identifiers as requested, :attr:`.missing` the
    distinct identifiers that no member set produced.

    """

    def __init__(self, ids: Sequence[Any], missing: Sequence[Any]):
        self.ids = tuple(ids)
        self.missing = tuple(missing)
        super().__init__(
            "Couldn't find all records with IDs (%s); not found: (%s)"
            % (
                ", ".join(repr(i) for i in self.ids),
                ", ".join(repr(i) for i in self.missing),
            )
        )

    def __reduce__(self) -> Any:
        return self.__class__, (self.ids, self.missing)


class UnsupportedOperation(
    NetworkError, sa_exc.InvalidRequestError, AttributeError
):
    """An operation was requested that a :class:`.UnionCollection` or one
    of its member sets does not provide.

    Derives from :class:`AttributeError` so that ``hasattr()`` and
    ``getattr()`` with a default behave normally against a union.

    """


class ConfigurationError(NetworkError, sa_exc.ArgumentError):
    """Raised when a network relationship or union accessor is declared
    with invalid or unresolvable arguments.

    This error corresponds to declaration time state errors; it is never
    raised while querying.

    """
