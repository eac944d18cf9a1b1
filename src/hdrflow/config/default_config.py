"""Default configuration values."""

# HDR detection
COLOR_SPACE_PATTERNS = ["bt2020", "rec2020"]  # BT.2020 family (space or primaries)
TRANSFER_PATTERNS = ["smpte2084"]  # PQ
HLG_PATTERNS = ["arib-std-b67", "hlg"]
DETECTION_THRESHOLD = 0.5

# HDR adjustments
HDR_CRF_ADJUSTMENT = 2.0
HDR_BITRATE_MULTIPLIER = 1.3

# Dolby Vision
DV_PROFILE_SPECIFIC_ADJUSTMENTS = True
DV_PRESERVE_PROFILE_7 = True

# External tools
FFMPEG = "ffmpeg"
FFPROBE = "ffprobe"
DOVI_TOOL = "dovi_tool"
HDR10PLUS_TOOL = "hdr10plus_tool"
MKVMERGE = "mkvmerge"
TOOL_TIMEOUT = 300.0  # Seconds per tool invocation

# Progress monitoring
POLL_INTERVAL = 0.5  # Seconds between progress polls
STALL_THRESHOLD = 15.0  # Seconds without a new frame before notifying
ETA_SMOOTHING = 0.3  # Weight of the newest blended ETA sample

# Content classification (bits per pixel per second)
LIGHT_GRAIN_BPP = 0.015
HEAVY_GRAIN_BPP = 0.02

# Encoder (x265 via ffmpeg)
ENCODER_PRESET = "medium"
CRF_SD = 20     # For videos with width <= 1280 (720p)
CRF_HD = 21     # For videos with width <= 1920 (1080p)
CRF_UHD = 22    # For videos with width > 1920 (4K and above)
