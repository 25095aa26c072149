# RPR protocol constants (numeric keys and message types)

RPR_VERSION = 1

# Envelope keys
K_V = 0
K_T = 1
K_ID = 2
K_TS = 3
K_SRC = 4
K_BODY = 6

# Client -> hub commands
T_REGISTER = 1
T_LIST_PEERS = 2
T_SEND = 3

# Hub -> client notifications
T_REGISTERED = 10
T_PEERS = 11
T_MESSAGE = 12
T_PRESENCE = 13

# Liveness (transport-level, never dispatched as commands)
T_PING = 30
T_PONG = 31

T_ERROR = 40

# REGISTER body keys
B_REGISTER_NAME = 0

# SEND body keys
B_SEND_TO = 0
B_SEND_CONTENT = 1

# REGISTERED body keys
B_REGISTERED_STATUS = 0
B_REGISTERED_NAME = 1

# PEERS entry keys
B_PEER_NAME = 0

# MESSAGE body keys
B_MSG_FROM = 0
B_MSG_TO = 1
B_MSG_CONTENT = 2
B_MSG_TS = 3

# PRESENCE body keys
B_PRESENCE_TEXT = 0
B_PRESENCE_NAME = 1
B_PRESENCE_EVENT = 2
B_PRESENCE_TS = 3

REGISTER_STATUS_SUCCESS = "success"

PRESENCE_CONNECTED = "connected"
PRESENCE_DISCONNECTED = "disconnected"
