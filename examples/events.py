"""
An example bot that uses events.
"""

# Events are the main way of listening to things that happen to the bot.
# They are registered with the @bot.event("name") decorator.
import logging

from erebus import Client, EventContext, Guild

logging.basicConfig(level=logging.INFO)

# The token is read from the DISCORD_CLIENT_TOKEN environment variable.
bot = Client()


# Events take at least one param - the EventContext. This contains the bot instance.
@bot.event("ready")
async def ready(ctx: EventContext):
    print("Logged in as {}, in {} guild(s)".format(ctx.bot.user, len(ctx.bot.guilds)))


# Guilds sent in READY are unavailable until their GUILD_CREATE arrives.
@bot.event("guild_available")
async def guild_available(ctx: EventContext, guild: Guild):
    print("Guild became available: {}".format(guild.name))


# Fired when the websocket had to be thrown away and a new one opened.
@bot.event("gateway_error")
async def gateway_error(ctx: EventContext, error: Exception):
    print("Reconnecting after: {}".format(error))


# Now, all that is left is to run the bot.
bot.run()
