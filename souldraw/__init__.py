"""SoulDraw Discord runtime.

Commands, buttons and rendering live here; lottery rules live in
``lottery_bot`` so they can be exercised without a Discord client.
"""

__all__ = ["commands", "config", "embeds", "messaging", "permissions", "runtime", "views"]
