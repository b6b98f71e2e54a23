# rchat protocol constants (numeric keys and message types)

RCHAT_VERSION = 1

# Envelope keys
K_V = 0
K_T = 1
K_ID = 2
K_TS = 3
K_SRC = 4
K_BODY = 6
K_KIND = 8

# Message types
T_COMMAND = 60
T_EVENT = 61

# Command kinds carried in K_KIND. Values are fixed on the wire.
KIND_ADMIN = 0
KIND_BROADCAST = 1
KIND_RENAME = 2
KIND_LIST_ROOMS = 3
KIND_CHANGE_ROOM = 4
KIND_LIST_USERS = 5

# Client-side command prefixes (text after the leading "/").
PREFIX_ADMIN = "sudo "
PREFIX_RENAME = "mv "
PREFIX_CHANGE_ROOM = "cd "
CMD_LIST_ROOMS = "ls"
CMD_LIST_USERS = "who"

# Sender ids of synthetic events.
SENDER_SYSTEM = "system"
SENDER_COW = "cow"
SYNTHETIC_SENDERS = frozenset({SENDER_SYSTEM, SENDER_COW})

DEFAULT_ROOM = "general"

NICK_MAX_CHARS = 32

# Inbound frames larger than this are rejected before CBOR decoding.
MAX_FRAME_BYTES = 4096

# Outbound events that do not fit one link packet are sent as an
# RNS.Resource up to this size, and split into several events beyond it.
MAX_RESOURCE_BYTES = 262144
