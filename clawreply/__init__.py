"""
clawreply - control-command interpreter and session state for chat agents
"""

__version__ = "0.1.0"
__logo__ = "⚙️"
