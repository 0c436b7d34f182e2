"""camnet -- simulated camera networks that hand targets over by auction."""

__version__ = "0.1.0"
