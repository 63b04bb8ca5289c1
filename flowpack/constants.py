"""Names and defaults shared by the build pipeline and the launcher."""

# Replaced with the project directory name when the bundle is patched.
PROJECT_NAME: str = "{FLOWPACK_PROJECT_DIR}"

DEVELOP_FLAG: str = "--develop"
NOLOAD_FLAG: str = "--noload"

USER_DIR: str = ".flowpack"
NOLOAD_USER_DIR: str = ".flowpack-unlocked"
FLOWS_FILE: str = "flows.json"
LOCALES_DIR: str = ".locales"
LOCALES_SOURCE: str = "locales"
SESSIONS_FILE: str = ".sessions.json"
ARCHIVE_SUFFIX: str = ".dat"
AUTOLOAD_FILE: str = "AUTOLOAD"
RESOURCES_DIR: str = "resources"

OUTPUT_DIR: str = "build"
INPUT_FILE: str = "launcher.py"
OUTPUT_NAME: str = "flowpack_bundle.py"
PACKAGE_NAME: str = "flowpack-app"
DESCRIPTOR_NAME: str = "package.json"
DEPS_OUTPUT_DIR: str = "site-packages"
NATIVE_OUTPUT_DIR: str = "native"

RUN_MODE_ENV: str = "FLOWPACK_RUN_MODE"

# Kept out of the bundle; copied verbatim into the build output instead.
EXTERNALS: tuple[str, ...] = (
    "flow_runtime/package.json",
    "flow_runtime.nodes",
    "flow_runtime.editor",
    "./resources",
)

# Byte-compiled in place, declared zip-safe, then shipped in site-packages
# with their metadata instead of being bundled.
PRECOMPILE: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "h11",
    "anyio",
    "sniffio",
)

# Bundled with every submodule; these load parts of themselves by name.
COLLECT_SUBMODULES: tuple[str, ...] = ("uvicorn",)
