"""
Runtime Environment Tables

Environment variables passed to the supervised Wine process. Values may use
``{placeholders}`` which the process supervisor fills in per launch:
``dxvk_cache``, ``dxvk_config``, ``dxvk_hud``, ``shader_cache``,
``shader_cache_size``, ``shader_cache_bytes`` and ``cpu_topology``.
"""

PREFIX_ENV_VAR = "WINEPREFIX"
ARCH_ENV_VAR = "WINEARCH"
FORCED_ARCH = "win32"

DEBUG_SUPPRESSION_ENV = {
    "WINEDEBUG": "-all",
}

# Only for normal sessions on the DXVK backend
ACCELERATED_BACKEND_ENV = {
    "DXVK_HUD": "{dxvk_hud}",
    "DXVK_ASYNC": "1",
    "DXVK_STATE_CACHE_PATH": "{dxvk_cache}",
    "DXVK_CONFIG_FILE": "{dxvk_config}",
    "DXVK_LOG_LEVEL": "warn",
    "MVK_CONFIG_LOG_LEVEL": "1",
    "MVK_CONFIG_TRACE_VULKAN_CALLS": "0",
    "MVK_CONFIG_SYNCHRONOUS_QUEUE_SUBMITS": "0",
    "MVK_CONFIG_PREFILL_METAL_COMMAND_BUFFERS": "1",
    "MVK_CONFIG_USE_METAL_ARGUMENT_BUFFERS": "1",
    "MVK_ALLOW_METAL_FENCES": "1",
    "MVK_ALLOW_METAL_EVENTS": "1",
}

HOST_TUNING_ENV = {
    "WINE_CPU_TOPOLOGY": "{cpu_topology}",
    "MESA_SHADER_CACHE_DIR": "{shader_cache}",
    "MESA_SHADER_CACHE_MAX_SIZE": "{shader_cache_size}",
    "__GL_SHADER_DISK_CACHE": "1",
    "__GL_SHADER_DISK_CACHE_PATH": "{shader_cache}",
    "__GL_SHADER_DISK_CACHE_SIZE": "{shader_cache_bytes}",
    "__GL_THREADED_OPTIMIZATIONS": "1",
    "__GL_SYNC_TO_VBLANK": "0",
    "vblank_mode": "0",
    "STAGING_SHARED_MEMORY": "1",
    "WINE_LARGE_ADDRESS_AWARE": "1",
    "MTL_HUD_ENABLED": "0",
}

# Applied last; keyed by SessionKind value
SESSION_KIND_ENV = {
    "normal": {
        "WINEDLLOVERRIDES": "winemenubuilder.exe=d",
    },
    "installer": {
        # Installers break under DXVK redirection; force the builtin D3D DLLs
        "WINEDLLOVERRIDES": "d3d9,d3d10core,d3d11,dxgi=b;winemenubuilder.exe=d;mshtml=d",
    },
}

# Cores exposed through WINE_CPU_TOPOLOGY; the game gains nothing beyond this
CPU_TOPOLOGY_MAX_CORES = 8

# Shader cache budget by total host memory
SHADER_CACHE_SIZES = [
    (16, "4G"),
    (8, "2G"),
    (0, "1G"),
]
