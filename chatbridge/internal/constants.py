# Environment variables
LOG_LEVEL_ENV_VAR = "CHATBRIDGE_LOG_LEVEL"
CONFIG_ENV_PREFIX = "CHATBRIDGE_"
CONFIG_FILE_ENV_VAR = "CHATBRIDGE_CONFIG"
HOME_ENV_VAR = "CHATBRIDGE_HOME"

# llama-server
LLAMA_SERVER_HOST = "127.0.0.1"
LLAMA_SERVER_PORT = 8080
LLAMA_SERVER_URL = f"http://{LLAMA_SERVER_HOST}:{LLAMA_SERVER_PORT}"
LLAMA_SERVER_STARTUP_TIMEOUT_SEC = 60.0
LLAMA_SERVER_REQUEST_TIMEOUT_SEC = 10.0
GPU_OFFLOAD_ALL_LAYERS = 999

# Generation defaults
DEFAULT_MAX_TOKENS = 1024
DEFAULT_TEMPERATURE = 0.7
DEFAULT_THREAD_COUNT = 4

# Debug log kept by bridges
DEBUG_HISTORY_LIMIT = 200

CONFIG_FILE_NAME = "config.json"
LOG_FILE_NAME = "chatbridge.log.json"
