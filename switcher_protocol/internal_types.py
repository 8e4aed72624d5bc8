#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Type hints used internally by this package"""

from __future__ import annotations

from typing import (
    Dict, List, Optional, Union, Any, TypeVar, Tuple, Set, Type, Callable, Awaitable,
    Iterable, Iterator, Mapping, MutableMapping, Sequence,
    AsyncIterable, AsyncIterator, AsyncContextManager, TYPE_CHECKING,
  )

from types import TracebackType

from typing_extensions import Self, Final

Jsonable = Union[str, int, float, bool, None, Dict[str, Any], List[Any]]
"""A type hint for a simple JSON-serializable value; i.e., str, int, float, bool, None, Dict[str, Jsonable], List[Jsonable]"""

JsonableDict = Dict[str, Jsonable]
"""A type hint for a simple JSON-serializable dict; i.e., Dict[str, Jsonable]"""

HostAndPort = Tuple[str, int]
"""A type hint for an IP address/port pair, as used by socket.sendto(), etc."""
