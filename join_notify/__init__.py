"""Discord Join Notify.

Tells a small roster of people on Telegram when one of them joins a Discord
voice channel.
"""
