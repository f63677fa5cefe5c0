from __future__ import annotations

PROTO_NAME = "relaypake"
PROTO_VER = "1"

DELIMITER = "#"
KEY_SEP = "."
STEP = "step"

# LOGIN
OPEN_IN = "op:pake__client_auth_data"
OPEN_OUT = "op:pake__server_auth_data"
OPEN_NEXT = "token__server_final"
CLOSE_IN = "op:pake__client_auth_result"
CLOSE_USER = "mail__user"
CLOSE_MAIL = "mail__session"

# SETUP
APP_IN = "app__in"
APP_OUT = "app__out"
APP_AUTH = "app__auth"
APP_PASTED = ""

# DEV
MAIL_TABLE = "mail__table"

ENV_STATE = "STATE"
ENV_SESSION = "SESSION"
ENV_OLD_HASH = "OLD_HASH"
ENV_PEPPER = "ROOT_PEPPER"
ENV_RECORD = "PASSWORD_RECORD"
ENV_INSTALLATION = "INSTALLATION"
ENV_MAIL_TABLE = "MAIL__TABLE"
TRIO_NAMES = ("SERVERS", "CLIENTS", "SECRETS")
ENV_ALL = (ENV_SESSION, ENV_PEPPER, ENV_RECORD, ENV_INSTALLATION, ENV_STATE, *TRIO_NAMES)

USER_ID = "root"
DELAY_S = 2
TIMEOUT_S = 60 * 15
PAKE_ITERATIONS = 1000
NEW_PASSWORD_BYTES = 3 * 23

DEV_HOME = "dev.txt"
DEV_TMP = "tmp-dev"
OUT_FILE = "secret.txt"

# Argon2id cost for the secret envelope key-encryption key
KDF_TIME_COST = 3
KDF_MEMORY_KIB = 19 * 1024
KDF_PARALLELISM = 1
SALT_BYTES = 16
IV_BYTES = 12
TAG_BYTES = 16
KEY_BYTES = 32

MAX_B64_LENGTH = 64 * 1024
MAX_RELAY_CHARS = 256 * 1024
MAX_TREE_DEPTH = 10
MAX_TREE_KEYS = 256
