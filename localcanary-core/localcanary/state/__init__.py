from .core import Decoder, Encoder, StateLifecycleHook

__all__ = [
    "Decoder",
    "Encoder",
    "StateLifecycleHook",
]
