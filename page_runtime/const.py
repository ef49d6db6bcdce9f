"""Constants shared across the page runtime."""

DOMAIN = "page_runtime"

# Persistence (versioned JSON document, one per storage file).
STORAGE_VERSION = 1
STORAGE_KEY = f"{DOMAIN}.state"
DEFAULT_KEY_PREFIX = DOMAIN

# Typed attribute extraction.
DATATYPE_SUFFIX = "Datatype"
DATA_ATTR_PREFIX = "data-"
MODULE_ATTR = "data-module"

# Asset loading.
DEFAULT_HASH_ALGORITHM = "sha256"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0

# Environment override for the options file.
ENV_OPTIONS_PATH = "PAGE_RUNTIME_OPTIONS"
DEFAULT_OPTIONS_PATH = "/data/options.json"

# Mutation type separator ("cart/add_item").
MUTATION_SEPARATOR = "/"
PATH_SEPARATOR = "."
