"""Sandpiper — materialize model-generated code into live sandboxes."""

__version__ = "0.3.0"
