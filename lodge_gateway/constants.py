APP_NAME = "Lodge Gateway"
APP_VERSION = "0.4.0"
DEFAULT_CORS_ALLOW_ORIGINS = [
	"http://localhost",
	"http://127.0.0.1",
	"http://localhost:5173",
	"http://localhost:8788",
]
DEFAULT_TRUSTED_HOSTS = [
	"127.0.0.1",
	"localhost",
	"testserver",
]

PROVIDER_OPENAI = "openai"
PROVIDER_XAI = "xai"
PRIMARY_PROVIDER = PROVIDER_OPENAI
SECONDARY_PROVIDER = PROVIDER_XAI

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_XAI_MODEL = "grok-2"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_XAI_BASE_URL = "https://api.x.ai/v1"
DEFAULT_UPSTREAM_TIMEOUT_S = 30.0
DEFAULT_RESEARCH_MAX_TOOL_CALLS = 3
CHAT_COMPLETIONS_TEMPERATURE = 0.2

EVENT_STREAM_MEDIA_TYPE = "text/event-stream"
STREAM_DONE_SENTINEL = "[DONE]"
WEB_SEARCH_SOURCES_INCLUDE = "web_search_call.action.sources"

CORRECTIVE_NUDGE = "Your previous output was invalid. Return ONLY valid JSON (no prose)."
SUGGEST_CORRECTIVE_NUDGE = "Your previous output was invalid. Return ONLY valid JSON with ok,value,reason."
SAFE_DEFAULT_REASON = "I couldn't reliably compute a suggestion, so I chose a safe default we can revise."

STREAM_HEADERS = {
	"Cache-Control": "no-cache",
	"Connection": "keep-alive",
	"X-Accel-Buffering": "no",
}
