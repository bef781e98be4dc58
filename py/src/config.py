# Configuration and constants.

# DISCORD_TOKEN # is expected in the environment
# TEST_GUILD_ID # can be provided in the environment
# SUMMON_PREFIX # can be provided in the environment

DEFAULT_SUMMON_PREFIX = "~!"
DEFAULT_HELP_KEY = "help"
MAX_MESSAGE_LENGTH = 1900
MAX_COMMAND_WORKERS = 5
COMMAND_TIMEOUT = 10.0  # in seconds
INVISIBLE_SPACE = "\u200b"
BOT_DESCRIPTION = "natty-bot rolls dice and remembers what you named them."
LOCAL_STORAGE_FILENAME = "natty.data"
STORAGE_SAVE_INTERVAL = 300.0  # in seconds
ENVIRONMENT_STORAGE_KEY = "environment"
GLOBAL_SCOPE = "globals"
MAX_LOOKUP_DEPTH = 64  # nested variable lookups per roll
