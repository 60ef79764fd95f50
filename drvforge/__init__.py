"""drvforge: declarative, content-addressed build orchestration.

Build units are declared once and expanded across target platforms into a
graph of derivations. Each derivation is identified by the hash of all its
inputs, built in a sandbox, and cached in a content-addressed store. Outputs
are packed into deterministic bundles and published as release assets.
"""

__version__ = "0.1.0"

from drvforge.core.declarations import load_declarations
from drvforge.core.orchestrator import Orchestrator

__all__ = ["Orchestrator", "load_declarations", "__version__"]
