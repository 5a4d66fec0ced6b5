"""Top-level package for the Farm to Door marketplace.

The modules are imported by their bare names (``from app import
FarmToDoorApp``) with ``src/`` on the path.  :mod:`app` wires the services
together, :mod:`repository` and :mod:`dao` own the storage slots, and
:mod:`cli` provides the interactive menu.
"""
