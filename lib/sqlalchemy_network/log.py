# sqlalchemy_network/log.py
# Copyright (C) 2022 the sqlalchemy-network authors and contributors
# <see AUTHORS file>
#
# This module is part of sqlalchemy-network and is released under
# the MIT License: https://www.opensource.org/licenses/mit-license.php

"""Logging control and utilities.

Control of logging for sqlalchemy-network is performed from the regular
python logging module.  The regular dotted module namespace is used,
starting at ``sqlalchemy_network``.  For class-level logging, the class name
is appended.

E.g.::

    import logging

    logging.getLogger("sqlalchemy_network").setLevel(logging.DEBUG)

will report each union materialization and each fan-out of a find across
member sets, while::

    logging.getLogger("sqlalchemy_network.network").setLevel(logging.INFO)

reports relationship declarations only.

"""
from __future__ import annotations

import logging
from typing import Set
from typing import Type
from typing import TypeVar

rootlogger = logging.getLogger("sqlalchemy_network")
if rootlogger.level == logging.NOTSET:
    rootlogger.setLevel(logging.WARN)

_IT = TypeVar("_IT")

_logged_classes: Set[Type[object]] = set()


def _qual_logger_name_for_cls(cls: Type[object]) -> str:
    return cls.__module__ + "." + cls.__name__


def class_logger(cls: Type[_IT]) -> Type[_IT]:
    logger = logging.getLogger(_qual_logger_name_for_cls(cls))
    cls._should_log_debug = lambda self: logger.isEnabledFor(  # type: ignore[attr-defined]  # noqa: E501
        logging.DEBUG
    )
    cls._should_log_info = lambda self: logger.isEnabledFor(  # type: ignore[attr-defined]  # noqa: E501
        logging.INFO
    )
    cls.logger = logger  # type: ignore[attr-defined]
    _logged_classes.add(cls)
    return cls
