"""
Performance Preset Catalogue

The numeric settings behind each preset tier and the decision table that
resolves the Auto preset. The engine in performance_service only reads these.
"""

# Guest settings per concrete tier
PRESET_GAME_SETTINGS = {
    "low": {
        "resolution": (640, 480),
        "draw_distance": 0.4,
        "anti_aliasing": False,
        "visual_fx": 0,
        "frame_limiter": False,
        "vsync": False,
    },
    "medium": {
        "resolution": (1024, 768),
        "draw_distance": 0.7,
        "anti_aliasing": False,
        "visual_fx": 0,
        "frame_limiter": False,
        "vsync": False,
    },
    "high": {
        "resolution": (1920, 1080),
        "draw_distance": 1.0,
        "anti_aliasing": False,
        "visual_fx": 2,
        "frame_limiter": False,
        "vsync": False,
    },
    "ultra": {
        "resolution": (2560, 1440),
        "draw_distance": 1.5,
        "anti_aliasing": True,
        "visual_fx": 3,
        "frame_limiter": False,
        "vsync": False,
    },
}

# Auto resolution. Rules are tried in order and the first match wins.
# A rule field left out (or None) matches anything.
#   arch:           "arm" or "x86"
#   min_memory_gib: inclusive lower bound
#   max_memory_gib: exclusive upper bound
#   gpu_contains:   any of these substrings in the GPU name
AUTO_PRESET_RULES = [
    {"arch": "arm", "min_memory_gib": 16, "preset": "high"},
    {"arch": "arm", "max_memory_gib": 16, "preset": "low"},
    {"gpu_contains": ["Radeon", "AMD"], "preset": "medium"},
    {"gpu_contains": ["Intel"], "preset": "low"},
]
AUTO_PRESET_FALLBACK = "low"

# DXVK tuning per tier. compiler_threads is "half" (half the cores, at least 2) or "all".
DXVK_TUNING = {
    "low": {
        "compiler_threads": "half",
        "max_frame_latency": 2,
        "max_device_memory": 2048,
        "graphics_pipeline_library": False,
        "hud": None,
        "max_chunk_size": None,
    },
    "medium": {
        "compiler_threads": "half",
        "max_frame_latency": 2,
        "max_device_memory": 2048,
        "graphics_pipeline_library": False,
        "hud": None,
        "max_chunk_size": None,
    },
    "high": {
        "compiler_threads": "all",
        "max_frame_latency": 1,
        "max_device_memory": 4096,
        "graphics_pipeline_library": True,
        "hud": "fps",
        "max_chunk_size": None,
    },
    "ultra": {
        "compiler_threads": "all",
        "max_frame_latency": 1,
        "max_device_memory": 8192,
        "graphics_pipeline_library": True,
        "hud": "fps,devinfo,memory",
        "max_chunk_size": 128,
    },
}

# Sections written verbatim after [Display] and [Graphics]
STATIC_SETTINGS_SECTIONS = {
    "Audio": {
        "SfxVolume": "100",
        "MusicVolume": "80",
        "RadioVolume": "80",
        "RadioEQ": "0",
    },
    "Controller": {
        "Method": "0",
        "InvertMouseY": "0",
        "MouseSensitivity": "50",
        "Steering": "0",
    },
    "Game": {
        "Subtitles": "1",
        "Language": "0",
        "Legend": "1",
        "RadarMode": "0",
        "HudMode": "1",
    },
}
