"""Discord bot integration for the TvM assistant.

The bot runs in-process with FastAPI, sharing the same event loop.
It hosts Town-vs-Mafia games: vote counts, day/night cycles, sign-ups,
night actions and an edit/delete message log.

Optional: if DISCORD_BOT_TOKEN is not set, the app runs without Discord.
"""
