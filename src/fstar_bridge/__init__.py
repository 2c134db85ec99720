"""Language server bridging LSP editors to the F* interactive IDE mode."""

from fstar_bridge.exceptions import BridgeError, NeverThrown, SessionSpawnError, SessionTransportError
from fstar_bridge.invariants import never

__all__ = [
    "__version__",
    "BridgeError",
    "NeverThrown",
    "SessionSpawnError",
    "SessionTransportError",
    "never",
]

__version__ = "0.1.0"
