# expose the public API lazily: pariter.iterate, pariter.iterate_as_array, ...
import importlib

from ._version import __version__

# Map public names to where they actually live
_lazy = {
    "iterate": (".iterator", "iterate"),
    "as_producer": (".iterator", "as_producer"),
    "ParallelIterator": (".iterator", "ParallelIterator"),
    "iterate_as_array": (".collect", "iterate_as_array"),
    "iterate_as_dict": (".collect", "iterate_as_dict"),
    "iterate_as_series": (".collect", "iterate_as_series"),
    "PoolConfig": (".config", "PoolConfig"),
    "default_workers": (".config", "default_workers"),
    "PoolController": (".core.pool", "PoolController"),
    "PariterError": (".errors", "PariterError"),
    "PoolError": (".errors", "PoolError"),
}

__all__ = ["__version__", *_lazy]


def __getattr__(name: str):
    try:
        mod_name, attr = _lazy[name]
    except KeyError as e:
        raise AttributeError(name) from e
    mod = importlib.import_module(mod_name, __name__)
    obj = getattr(mod, attr)
    globals()[name] = obj  # cache for next time
    return obj
