"""brainsync - encrypted multi-machine sync for conversation data"""

__version__ = "0.1.0"
