"""LC-3 virtual machine with an interactive single-step debugger and line editor."""

__version__ = "0.1.0"