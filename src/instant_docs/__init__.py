"""
Example backend → Layer tokens → Document engine downloads

Browse documents hosted on the example backend, fetch short-lived per-layer
tokens and drive downloads and reauthentication through a document engine,
keeping a sectioned document list consistent with remote state.
"""

__version__ = "0.1.0"
