"""
DriftHound GitHub Action helpers.

Resolves drift-check scopes from a YAML configuration, installs the
infrastructure tools they need, runs the drifthound CLI per scope and
summarizes the results.
"""

__version__ = "0.3.0"
