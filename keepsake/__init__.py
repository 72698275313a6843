"""Keepsake — story permanence scoring for ephemeral user content.

Decides how long each story stays visible, when it fades, when it expires,
and when sustained engagement (or a milestone label) earns it a permanent
place in the owner's archive.
"""

__version__ = "1.0.0"
