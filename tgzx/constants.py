# Envelope header (age v1)
ENVELOPE_VERSION_LINE = b"age-encryption.org/v1"
STANZA_PREFIX = b"-> "
MAC_PREFIX = b"---"
BODY_COLUMNS = 64
MAX_HEADER_LINE = 4096
MAX_STANZAS = 64

# Recipient stanza types and wrap labels
STANZA_SSH_RSA = "ssh-rsa"
STANZA_SSH_ED25519 = "ssh-ed25519"
SSH_RSA_LABEL = b"age-encryption.org/v1/ssh-rsa"
SSH_ED25519_LABEL = b"age-encryption.org/v1/ssh-ed25519"
TAG_SIZE = 4  # bytes of SHA-256(ssh wire key) in a stanza tag

# Keys
FILE_KEY_SIZE = 16
X25519_SIZE = 32
MIN_RSA_BITS = 2048

# Payload (STREAM construction over ChaCha20-Poly1305)
PAYLOAD_NONCE_SIZE = 16
PAYLOAD_CHUNK_SIZE = 64 * 1024
AEAD_KEY_SIZE = 32
AEAD_TAG_SIZE = 16
HKDF_INFO_HEADER = b"header"
HKDF_INFO_PAYLOAD = b"payload"

# Key listing retrieval
DEFAULT_KEYS_URL = "https://github.com/{}.keys"
DEFAULT_FETCH_TIMEOUT = 30.0
KEY_LOG_PREFIX = 40  # characters of an unparsable key line shown in logs

# Create pipeline
DEFAULT_PIPE_CAPACITY = 4 * PAYLOAD_CHUNK_SIZE
COPY_BUFFER_SIZE = PAYLOAD_CHUNK_SIZE
SPOOL_MAX_SIZE = 64 * 1024 * 1024  # decrypted bytes kept in memory before spilling to disk

# Environment configuration
ENV_PREFIX = "SSH_TGZX_"
ENV_LOG_LEVEL = ENV_PREFIX + "LOG_LEVEL"
ENV_LOG_FORMAT = ENV_PREFIX + "LOG_FORMAT"
ENV_KEYS_URL = ENV_PREFIX + "KEYS_URL"
ENV_PASSPHRASE = ENV_PREFIX + "PASSPHRASE"
