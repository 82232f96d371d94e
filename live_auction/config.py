"""
Configuration constants for the live auction bidding coordinator.
"""

import os

# Auction Defaults
DEFAULT_TIME_PER_ITEM = 60       # seconds on the clock for each player
DEFAULT_BID_INCREMENT = 1        # any raise over the current price; auctions may set a larger step
MIN_BID_AMOUNT = 20000           # smallest opening bid accepted for any player
MIN_PURSE = 0                    # minimum purse a team must bring to register

# Tiered increments, relative to the player's base price.
# Below 2x base the first step applies, below 4x base the second, then the third.
INCREMENT_TIER_MULTIPLIERS = (2, 4)

# Roster Construction
MIN_PLAYERS_PER_TEAM = 15
MAX_PLAYERS_PER_TEAM = 25

# Roster reserve policy: require enough purse to fill the minimum roster
# at MIN_BID_AMOUNT after every accepted bid
ENFORCE_ROSTER_RESERVE = False

# Seconds to wait after a player is resolved before moving on automatically.
# None means the admin advances manually.
AUTO_ADVANCE_SECONDS = None

# ===== BROADCAST CONFIGURATION =====

# Outbound messages buffered per connected client before it is dropped
CLIENT_QUEUE_SIZE = 100

# Bids included in the snapshot sent to (re)connecting clients
SNAPSHOT_BID_HISTORY = 10

# Roles
ROLE_ADMIN = 'admin'
ROLE_TEAM_OWNER = 'team_owner'
ROLE_VIEWER = 'viewer'

# ===== STORAGE CONFIGURATION =====

AUCTION_EVENTS_DIR = 'data/auction_events'
AUCTION_EXPORTS_DIR = 'data/auction_exports'

# ===== REST BACKEND CONFIGURATION =====

# Base URL of the tournament/player/team backend
API_BASE_URL = os.getenv('AUCTION_API_URL', 'http://localhost:5000/api')
API_TOKEN = os.getenv('AUCTION_API_TOKEN')
API_TIMEOUT = 10       # seconds
API_MAX_RETRIES = 3

# Record sale outcomes with the backend as they happen
RECORD_RESULTS_REMOTELY = False

# ===== AUTH CONFIGURATION =====

# JSON file mapping bearer tokens to {"principal": ..., "role": ..., "team_id": ...}
AUTH_TOKENS_FILE = os.getenv('AUCTION_AUTH_TOKENS', 'data/auth_tokens.json')

# ===== API SERVER CONFIGURATION =====

API_HOST = '127.0.0.1'
API_PORT = 8000

# Only one running session per auction id
MAX_SESSIONS = 16

# Logging
LOG_LEVEL = 'INFO'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
