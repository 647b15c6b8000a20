"""relay-admin: admin console for relay nodes, multi-hop tunnels and forwarding rules."""

__version__ = "0.1.0"
