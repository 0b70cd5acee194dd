"""
StoryFrame 공통 상수 모듈

프로젝트 전체에서 반복 사용되는 상수를 단일 소스로 관리합니다.
"""

# ─── Gemini 모델명 ────────────────────────────────────────
MODEL_GEMINI_FLASH = "gemini-2.5-flash"
MODEL_GEMINI_PRO = "gemini-2.5-pro"
MODEL_GEMINI_FLASH_IMAGE = "gemini-2.5-flash-image"

# ─── 입력 제한 ────────────────────────────────────────────
MAX_STORY_LENGTH = 10000
MAX_SECONDARY_CHARACTERS = 9
MAX_CUSTOM_INSTRUCTION_LENGTH = 2000
ALLOWED_FRAME_COUNTS = (2, 4, 6, 8)
FRAMES_PER_SCENE = 2

# ─── Story World ─────────────────────────────────────────
MIN_ATTRACTORS = 6
MAX_ATTRACTORS = 8

# ─── Tier 7 품질 네거티브 ─────────────────────────────────
UNIVERSAL_NEGATIVES = (
    "without subtitles, without logos, without compression artifacts, "
    "without anatomical warping, exactly 5 fingers per hand, "
    "no text overlays, no watermarks"
)

CAMERA_POSITION_SYNTAX = "(thats where the camera is)"

# ─── 일관성 휴리스틱 토큰 ─────────────────────────────────
CHARACTER_REFERENCE_TOKENS = ("character", "protagonist", "main")
CONSISTENCY_MARKERS = ("exact", "verbatim", "identical", "same")

# ─── 이미지 검증 / sentinel ──────────────────────────────
MIN_IMAGE_BYTES = 1000
FRAME_ERROR_MARKER = "x-storyframe=frame-error"
KNOWN_ERROR_URL_TOKENS = ("placehold.co", FRAME_ERROR_MARKER)

# ─── 프레임 메타데이터 기본값 ─────────────────────────────
DEFAULT_PALETTE = ["#1a1a1a", "#f5f5f5", "#4a90e2"]
DEFAULT_CAMERA = "Professional cinematography based on screenplay architecture"

# ─── 진행률 / ETA ─────────────────────────────────────────
ETA_PACE_WEIGHT = 0.7
ETA_BASELINE_WEIGHT = 0.3
IMAGES_PROGRESS_START = 35
IMAGES_PROGRESS_SPAN = 60
