"""
A small wrapper around dill that integrates with the state API, and allows registering custom reducers for types
that hold unpicklable members (locks, for instance)::

    def _create_function(name, versions):
        return Function(name=name, versions=versions)

    @reducer(Function, _create_function)
    def pickle_function(obj):
        return obj.name, obj.versions

For your convenience, you can simply call ``dumps`` or ``loads`` as you would pickle or dill.
"""

from typing import Any, BinaryIO, Callable, Type

import dill
from dill._dill import MetaCatchingDict

from .core import Decoder, Encoder

PythonPickler = Any
"""Type placeholder for pickle._Pickler (which has for instance the save_reduce method)"""


def reducer(cls: Type, restore: Callable = None):
    """
    Decorator that registers a reducer for ``cls``. The decorated function receives the object and returns the tuple
    of arguments that ``restore`` (or ``cls`` itself, if no restore function is given) is called with on load.

    :param cls: the type
    :param restore: the callable that re-creates the object from the returned arguments
    """

    def _wrapper(fn):
        def _reducer(pickler, obj):
            return pickler.save_reduce(restore or cls, fn(obj), obj=obj)

        add_dispatch_entry(cls, _reducer)
        return fn

    return _wrapper


def add_dispatch_entry(cls: Type, fn: Callable[[PythonPickler, Any], None]):
    Pickler.dispatch_overwrite[cls] = fn


def remove_dispatch_entry(cls: Type):
    Pickler.dispatch_overwrite.pop(cls, None)


def dumps(obj: Any) -> bytes:
    """
    Pickle an object into bytes using a ``PickleEncoder``.

    :param obj: the object to pickle
    :return: the pickled object
    """
    return PickleEncoder().encodes(obj)


def dump(obj: Any, file: BinaryIO):
    """
    Pickle an object into a buffer using a ``PickleEncoder``.

    :param obj: the object to pickle
    :param file: the IO buffer
    """
    return PickleEncoder().encode(obj, file)


def loads(data: bytes) -> Any:
    """
    Unpickle an object from bytes using a ``PickleDecoder``.

    :param data: the pickled object
    :return: the unpickled object
    """
    return PickleDecoder().decodes(data)


def load(file: BinaryIO) -> Any:
    """
    Unpickle an object from a buffer using a ``PickleDecoder``.

    :param file: the buffer containing the pickled object
    :return: the unpickled object
    """
    return PickleDecoder().decode(file)


class Pickler(dill.Pickler):
    """
    Custom dill pickler that considers reducers registered via ``reducer``.
    """

    dispatch_overwrite: dict[Type, Callable] = {}

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)

        # create the dispatch table (inherit the dill dispatchers)
        dispatch = MetaCatchingDict(dill.Pickler.dispatch.copy())
        dispatch.update(Pickler.dispatch_overwrite.copy())  # makes sure ours take precedence
        self.dispatch = dispatch


class PickleEncoder(Encoder):
    """
    An Encoder that uses dill pickling under the hood, and by default uses the custom ``Pickler`` that can be
    extended with custom reducers.
    """

    pickler_class: Type[dill.Pickler]

    def __init__(self, pickler_class: Type[dill.Pickler] = None):
        self.pickler_class = pickler_class or Pickler

    def encode(self, obj: Any, file: BinaryIO):
        return self.pickler_class(file).dump(obj)


class PickleDecoder(Decoder):
    """
    A Decoder that uses dill pickling under the hood.
    """

    unpickler_class: Type[dill.Unpickler]

    def __init__(self, unpickler_class: Type[dill.Unpickler] = None):
        self.unpickler_class = unpickler_class or dill.Unpickler

    def decode(self, file: BinaryIO) -> Any:
        return self.unpickler_class(file).load()
