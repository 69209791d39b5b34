# sqlalchemy_network/__init__.py
# Copyright (C) 2022 the sqlalchemy-network authors and contributors
# <see AUTHORS file>
#
# This module is part of sqlalchemy-network and is released under
# the MIT License: https://www.opensource.org/licenses/mit-license.php

from .accessor import declare_union
from .accessor import NetworkExtensionType
from .accessor import union_accessor
from .accessor import union_accessors
from .accessor import UnionAccessor
from .exc import ConfigurationError
from .exc import NetworkError
from .exc import RecordNotFound
from .exc import UnsupportedOperation
from .members import FindCriteria
from .network import declare_network
from .network import NetworkAccessor
from .network import NetworkConfig
from .union import ALL
from .union import FindMode
from .union import FIRST
from .union import UnionCollection


__version__ = "1.0.0"


def __go(lcls):
    global __all__

    import inspect as _inspect

    __all__ = sorted(
        name
        for name, obj in lcls.items()
        if not (name.startswith("_") or _inspect.ismodule(obj))
    )


__go(locals())
