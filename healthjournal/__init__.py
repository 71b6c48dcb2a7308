"""Personal health journal core.

This package contains the domain models, the medication consistency engine,
the import/export codec and the journal service, isolated from storage
backends (see ``adapters.storage``) for easy testing and reasoning.
"""

__version__ = "0.1.0"
