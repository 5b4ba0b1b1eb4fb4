from prometheus_client import Counter, Gauge, Histogram

# HTTP request metrics
HTTP_REQUESTS_TOTAL = Counter(
    "speechbridge_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_class"],
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "speechbridge_http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "path"],
)

# Auth gate outcomes
AUTH_GATE_TOTAL = Counter(
    "speechbridge_auth_gate_total",
    "Auth gate decisions",
    ["mode", "outcome"],
)
OIDC_REFRESH_TOTAL = Counter(
    "speechbridge_oidc_refresh_total",
    "OIDC refresh-token grant outcomes",
    ["outcome"],
)

# Realtime channel metrics
WS_CONNECTIONS_OPEN = Gauge(
    "speechbridge_ws_connections_open",
    "Currently open WebSocket connections",
)
WS_HANDSHAKE_TOTAL = Counter(
    "speechbridge_ws_handshake_total",
    "WebSocket handshake outcomes",
    ["outcome"],
)
WS_FRAMES_TOTAL = Counter(
    "speechbridge_ws_frames_total",
    "Inbound WebSocket frames by declared type",
    ["type"],
)
WS_FRAME_SECONDS = Histogram(
    "speechbridge_ws_frame_seconds",
    "Duration of WebSocket frame handling in seconds",
    ["type"],
)

# Emotion analysis provider calls
EMOTION_ANALYSIS_SECONDS = Histogram(
    "speechbridge_emotion_analysis_seconds",
    "Duration of emotion analysis calls in seconds",
    ["provider"],
)
