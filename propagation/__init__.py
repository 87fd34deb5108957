"""
Propagation client for content-addressed DataStore snapshots.
"""

from .client import PropagationClient
from .config import Config, load_config
from .exceptions import PropagationError

__version__ = '0.1.0'

__all__ = ['PropagationClient', 'Config', 'load_config', 'PropagationError']
