"""hostplay: declarative host-configuration playbooks."""

__version__ = "0.1.0"
