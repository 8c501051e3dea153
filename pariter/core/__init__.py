"""Worker-pool engine: framed channels, forked workers, readiness multiplexing and the pool controller."""
from .channel import Channel, channel_pair, END
from .multiplex import Multiplexer
from .worker import Worker, spawn_worker, worker_loop
from .pool import PoolController

__all__ = ["Channel", "channel_pair", "END", "Multiplexer", "Worker", "spawn_worker", "worker_loop", "PoolController"]
