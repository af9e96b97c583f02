"""consul-leader: leader election for a named service over Consul sessions."""

__version__ = "0.1.0"
