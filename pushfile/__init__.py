"""
pushfile - one-shot file transfer over raw TCP.
"""

from .transfer import Sender, Receiver, TransferListener, TransferResult

__version__ = '0.1.0'

__all__ = [
    'Sender',
    'Receiver',
    'TransferListener',
    'TransferResult',
]
