"""
agentmem: tiered long-term memory for conversational agents.
"""

__version__ = '0.1.0'

# Configure logging as soon as the package is imported
from .utils.logging_config import setup_logging

setup_logging()
