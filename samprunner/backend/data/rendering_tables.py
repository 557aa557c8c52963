"""
Rendering Backend Tables

Registry keys, DLL lists and driver-shim locations used to detect and apply
a rendering backend. DXVK is the accelerated translation backend, WineD3D the
built-in one.
"""

# DLLs DXVK drops into system32; all must be present (and real) for DXVK to be selectable
DXVK_DLLS = ["d3d9.dll", "d3d10core.dll", "d3d11.dll", "dxgi.dll"]

# Files that force DXVK when they sit next to the game executable
DXVK_ARTIFACTS = DXVK_DLLS + ["dxvk.conf"]

# Wine writes these markers into the stub DLLs it places in system32
WINE_PLACEHOLDER_SIGNATURES = (b"Wine builtin DLL", b"Wine placeholder DLL")

# Well-known install locations of the Vulkan driver shim, per host platform.
# Entries are glob patterns; the first existing match wins.
DRIVER_SHIM_LOCATIONS = {
    "darwin": [
        "{bundle}/wine/lib/libMoltenVK.dylib",
        "/opt/homebrew/lib/libMoltenVK.dylib",
        "/usr/local/lib/libMoltenVK.dylib",
        "/opt/homebrew/share/vulkan/icd.d/MoltenVK_icd.json",
        "/usr/local/share/vulkan/icd.d/MoltenVK_icd.json",
    ],
    "linux": [
        "/usr/share/vulkan/icd.d/*.json",
        "/etc/vulkan/icd.d/*.json",
        "/usr/local/share/vulkan/icd.d/*.json",
        "{home}/.local/share/vulkan/icd.d/*.json",
    ],
}

DLL_OVERRIDES_KEY = "Software\\Wine\\DllOverrides"
DIRECT3D_KEY = "Software\\Wine\\Direct3D"
EXPLORER_KEY = "Software\\Wine\\Explorer"
DESKTOPS_KEY = "Software\\Wine\\Explorer\\Desktops"
DISPLAY_DRIVER_KEY = "Software\\Wine\\X11 Driver"

# DLL override mode per backend
BACKEND_DLL_OVERRIDES = {
    "dxvk": {
        "d3d9": "native",
        "d3d10core": "native",
        "d3d11": "native",
        "dxgi": "native",
    },
    "wined3d": {
        "d3d9": "builtin",
        "d3d10core": "builtin",
        "d3d11": "builtin",
        "dxgi": "builtin",
    },
}

# WineD3D renderer and shader-compiler settings: (value, registry type).
# DXVK owns none of these, so switching to DXVK deletes them.
WINED3D_DIRECT3D_SETTINGS = [
    ("renderer", "gl", "REG_SZ"),
    ("shader_backend", "glsl", "REG_SZ"),
    ("csmt", "1", "REG_DWORD"),
    ("OffscreenRenderingMode", "fbo", "REG_SZ"),
]
VIDEO_MEMORY_VALUE = "VideoMemorySize"

DEFAULT_VIDEO_MEMORY_MB = 2048
DEFAULT_DESKTOP_RESOLUTION = "1024x768"
DEFAULT_COLOR_DEPTH = 32
VIRTUAL_DESKTOP_NAME = "Default"
